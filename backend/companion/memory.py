from datetime import datetime, timedelta
import json
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import TypeAdapter, ValidationError as PydanticValidationError
from pymongo import DESCENDING, ReturnDocument, UpdateOne
from pymongo.database import Database
from pymongo.errors import PyMongoError

from .errors import StorageError
from .models import ConversationContext, ConversationRecord, Energy, Memory, Mood
from .utils.dates import safe_bson_date, to_naive_utc, utcnow
from .utils.db import CONVERSATIONS, MEMORIES

logger = logging.getLogger(__name__)

# ------------------------
# Constants
# ------------------------

CONVERSATION_TYPE = "conversation"
GENERAL_TYPES = ("general", CONVERSATION_TYPE)

CURRENT_TASK_KEY = "current_task"
CURRENT_MOOD_KEY = "current_mood"
CURRENT_ENERGY_KEY = "current_energy"
RECENT_TOPICS_KEY = "recent_topics"
ACTIVE_MODULES_KEY = "active_modules"

RECENT_ACTIVITY_WINDOW = timedelta(hours=24)

_mood_adapter = TypeAdapter(Mood)
_energy_adapter = TypeAdapter(Energy)

_NEWEST_FIRST = [("updated_at", DESCENDING), ("_id", DESCENDING)]


def _is_expired(doc: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    expires_at = safe_bson_date(doc.get("expires_at"))
    if expires_at is None:
        return False
    return to_naive_utc(expires_at) < (now or utcnow())


def _live_filter(now: datetime) -> Dict[str, Any]:
    return {"$or": [{"expires_at": None}, {"expires_at": {"$gt": now}}]}


def _to_memory(doc: Dict[str, Any]) -> Memory:
    return Memory(
        id=str(doc["_id"]),
        user_id=doc["user_id"],
        key=doc["key"],
        value=doc.get("value", ""),
        type=doc.get("type", "general"),
        expires_at=doc.get("expires_at"),
        created_at=doc["created_at"],
        updated_at=doc["updated_at"],
    )


def _to_record(doc: Dict[str, Any]) -> ConversationRecord:
    return ConversationRecord(
        id=str(doc["_id"]),
        user_id=doc["user_id"],
        content=doc.get("content", ""),
        metadata=doc.get("metadata"),
        timestamp=doc["timestamp"],
    )


def _memory_upsert(
    user_id: str,
    key: str,
    value: str,
    type: str,
    expires_at: Optional[datetime],
    now: datetime,
):
    """Filter and update documents shared by single and bulk upserts."""
    return (
        {"user_id": user_id, "key": key, "type": type},
        {
            "$set": {"value": value, "expires_at": to_naive_utc(expires_at), "updated_at": now},
            "$setOnInsert": {"created_at": now},
        },
    )


class MemoryStore:
    """
    Durable per-user memories (typed key/value facts with optional expiry) and
    the append-only log of exchanged messages.
    """

    def __init__(self, db: Database):
        self.memories = db[MEMORIES]
        self.conversations = db[CONVERSATIONS]

    # ------------------------
    # Core Memory Functions
    # ------------------------

    def upsert_memory(
        self,
        user_id: str,
        key: str,
        value: str,
        type: str = "general",
        expires_at: Optional[datetime] = None,
    ) -> Memory:
        now = utcnow()
        query, update = _memory_upsert(user_id, key, value, type, expires_at, now)
        try:
            doc = self.memories.find_one_and_update(
                query,
                update,
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise StorageError("Failed to store memory", e) from e
        return _to_memory(doc)

    def get_memory(self, user_id: str, key: str, type: Optional[str] = None) -> Optional[Memory]:
        query: Dict[str, Any] = {"user_id": user_id, "key": key}
        if type:
            query["type"] = type

        try:
            doc = self.memories.find_one(query, sort=_NEWEST_FIRST)
            if doc is None:
                return None

            if _is_expired(doc):
                self.memories.delete_one({"_id": doc["_id"]})
                return None
        except PyMongoError as e:
            raise StorageError("Failed to retrieve memory", e) from e

        return _to_memory(doc)

    def get_relevant_memories(
        self,
        user_id: str,
        context: ConversationContext,
        limit: int = 10,
    ) -> List[Memory]:
        """
        Takes the `limit` most recently updated live memories and keeps the ones
        tied to the current task, an active module, a recent topic, or that are
        general/conversation memories. Recency order is preserved.
        """
        query = {"user_id": user_id, **_live_filter(utcnow())}
        try:
            docs = list(self.memories.find(query).sort(_NEWEST_FIRST).limit(limit))
        except PyMongoError as e:
            raise StorageError("Failed to retrieve relevant memories", e) from e

        relevant = [_to_memory(doc) for doc in docs if _is_relevant(doc, context)]
        return relevant[:limit]

    def delete_memory(self, memory_id: str) -> bool:
        try:
            obj_id = ObjectId(memory_id)
        except InvalidId:
            return False

        try:
            result = self.memories.delete_one({"_id": obj_id})
        except PyMongoError as e:
            raise StorageError("Failed to delete memory", e) from e
        return result.deleted_count == 1

    def cleanup_expired(self) -> int:
        try:
            result = self.memories.delete_many({"expires_at": {"$lt": utcnow()}})
        except PyMongoError as e:
            raise StorageError("Failed to cleanup expired memories", e) from e
        return result.deleted_count

    def memory_stats(self, user_id: str) -> Dict[str, Any]:
        try:
            total = self.memories.count_documents({"user_id": user_id})
            by_type: Dict[str, int] = {}
            for doc in self.memories.find({"user_id": user_id}, {"type": 1}):
                memory_type = doc.get("type", "general")
                by_type[memory_type] = by_type.get(memory_type, 0) + 1
            recent_activity = self.memories.count_documents(
                {"user_id": user_id, "updated_at": {"$gte": utcnow() - RECENT_ACTIVITY_WINDOW}}
            )
        except PyMongoError as e:
            raise StorageError("Failed to get memory statistics", e) from e

        return {"total": total, "byType": by_type, "recentActivity": recent_activity}

    # ------------------------
    # Conversation Context
    # ------------------------

    def get_conversation_context(self, user_id: str) -> ConversationContext:
        context = ConversationContext(user_id=user_id)

        current_task = self.get_memory(user_id, CURRENT_TASK_KEY, CONVERSATION_TYPE)
        if current_task:
            context.current_task = current_task.value

        current_mood = self.get_memory(user_id, CURRENT_MOOD_KEY, CONVERSATION_TYPE)
        if current_mood:
            try:
                context.mood = _mood_adapter.validate_python(current_mood.value)
            except PydanticValidationError:
                logger.warning(f"Ignoring unknown stored mood '{current_mood.value}' for user {user_id}")

        current_energy = self.get_memory(user_id, CURRENT_ENERGY_KEY, CONVERSATION_TYPE)
        if current_energy:
            try:
                context.energy = _energy_adapter.validate_python(current_energy.value)
            except PydanticValidationError:
                logger.warning(f"Ignoring unknown stored energy '{current_energy.value}' for user {user_id}")

        recent_topics = self.get_memory(user_id, RECENT_TOPICS_KEY, CONVERSATION_TYPE)
        if recent_topics:
            parsed = _parse_string_list(recent_topics.value, RECENT_TOPICS_KEY)
            if parsed is not None:
                context.recent_topics = parsed

        active_modules = self.get_memory(user_id, ACTIVE_MODULES_KEY, CONVERSATION_TYPE)
        if active_modules:
            parsed = _parse_string_list(active_modules.value, ACTIVE_MODULES_KEY)
            if parsed is not None:
                context.active_modules = parsed

        return context

    def store_conversation_context(self, user_id: str, context: ConversationContext) -> None:
        """
        Writes one `conversation` memory per populated field in a single ordered
        bulk write.
        """
        values: Dict[str, str] = {}
        if context.current_task:
            values[CURRENT_TASK_KEY] = context.current_task
        if context.mood:
            values[CURRENT_MOOD_KEY] = context.mood
        if context.energy:
            values[CURRENT_ENERGY_KEY] = context.energy
        if context.recent_topics:
            values[RECENT_TOPICS_KEY] = json.dumps(context.recent_topics)
        if context.active_modules:
            values[ACTIVE_MODULES_KEY] = json.dumps(context.active_modules)

        if not values:
            return

        now = utcnow()
        operations = [
            UpdateOne(*_memory_upsert(user_id, key, value, CONVERSATION_TYPE, None, now), upsert=True)
            for key, value in values.items()
        ]
        try:
            self.memories.bulk_write(operations, ordered=True)
        except PyMongoError as e:
            raise StorageError("Failed to store conversation context", e) from e

    # ------------------------
    # Conversation Log
    # ------------------------

    def append_message(
        self,
        user_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ConversationRecord:
        doc = {
            "user_id": user_id,
            "content": content,
            "metadata": metadata,
            "timestamp": utcnow(),
        }
        try:
            result = self.conversations.insert_one(doc)
        except PyMongoError as e:
            raise StorageError("Failed to store conversation", e) from e

        doc["_id"] = result.inserted_id
        return _to_record(doc)

    def recent_messages(self, user_id: str, limit: int = 20) -> List[ConversationRecord]:
        try:
            cursor = (
                self.conversations.find({"user_id": user_id})
                .sort([("timestamp", DESCENDING), ("_id", DESCENDING)])
                .limit(limit)
            )
            return [_to_record(doc) for doc in cursor]
        except PyMongoError as e:
            raise StorageError("Failed to retrieve recent conversations", e) from e

    # ------------------------
    # Reset
    # ------------------------

    def reset_user(self, user_id: str, memory_type: Optional[str] = None) -> bool:
        """
        Deletes every conversation record of the user and their memories, or
        only the memories of `memory_type` when given. Storage errors propagate.
        """
        memory_query: Dict[str, Any] = {"user_id": user_id}
        if memory_type:
            memory_query["type"] = memory_type

        try:
            self.conversations.delete_many({"user_id": user_id})
            self.memories.delete_many(memory_query)
        except PyMongoError as e:
            raise StorageError(f"Failed to reset memory for user {user_id}", e) from e
        return True


# ------------------------
# Helpers
# ------------------------

def _parse_string_list(raw: str, key: str) -> Optional[List[str]]:
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse {key}: {e}")
        return None

    if not isinstance(parsed, list):
        logger.warning(f"Failed to parse {key}: expected a list, got {type(parsed).__name__}")
        return None
    return [str(item) for item in parsed]


def _is_relevant(doc: Dict[str, Any], context: ConversationContext) -> bool:
    key = str(doc.get("key", ""))
    value = str(doc.get("value", "")).lower()

    if context.current_task:
        if "task" in key or context.current_task.lower() in value:
            return True

    for module in context.active_modules:
        if module in key or module.lower() in value:
            return True

    for topic in context.recent_topics:
        if topic.lower() in value:
            return True

    return doc.get("type") in GENERAL_TYPES
