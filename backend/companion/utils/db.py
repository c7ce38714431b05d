# companion/utils/db.py
import logging

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from companion.config import Settings

# Initialize logger for this module
logger = logging.getLogger(__name__)

MEMORIES = "memories"
CONVERSATIONS = "conversations"
TASKS = "tasks"


def get_database(settings: Settings) -> Database:
    """
    Opens the MongoDB database named in settings. MongoClient connects lazily,
    so nothing touches the network until the first operation.
    """
    client = MongoClient(settings.mongo_uri, serverSelectionTimeoutMS=5000)
    return client[settings.mongo_db_name]


def ensure_indexes(db: Database) -> None:
    # One live memory per (user_id, key, type)
    db[MEMORIES].create_index(
        [("user_id", ASCENDING), ("key", ASCENDING), ("type", ASCENDING)],
        unique=True,
        name="user_key_type",
    )
    db[MEMORIES].create_index([("user_id", ASCENDING), ("updated_at", DESCENDING)])
    db[CONVERSATIONS].create_index([("user_id", ASCENDING), ("timestamp", DESCENDING)])
    db[TASKS].create_index([("user_id", ASCENDING), ("status", ASCENDING)])


def ping(db: Database) -> bool:
    try:
        db.client.admin.command("ping")
        logger.info("Pinged your deployment. Successfully connected to MongoDB!")
        return True
    except Exception as e:
        logger.error(f"MongoDB connection failed: {e}")
        return False
