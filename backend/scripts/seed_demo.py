import sys

from pymongo import errors

from companion.config import Settings
from companion.errors import StorageError
from companion.memory import MemoryStore
from companion.models import TaskCreate
from companion.tasks import TaskStore
from companion.utils.db import ensure_indexes, get_database

DEMO_TASKS = [
    TaskCreate(
        title="Welcome to your companion!",
        description="This is your first task. Try asking for help organizing your day.",
        category="Personal",
        priority="medium",
    ),
    TaskCreate(
        title="Explore the modules",
        description="Mention a language you are learning or some code you are working on.",
        category="Learning",
        priority="high",
    ),
]

DEMO_MEMORIES = [
    ("communication_style", "casual", "preference"),
    ("user_experience", "new_user", "general"),
]


def seed(settings: Settings, user_id: str) -> None:
    db = get_database(settings)
    ensure_indexes(db)

    tasks = TaskStore(db)
    if tasks.list_tasks(user_id):
        print(f"⚠️ User {user_id} already has tasks, skipping task seed")
    else:
        for task in DEMO_TASKS:
            tasks.create_task(user_id, task)

    memory = MemoryStore(db)
    for key, value, memory_type in DEMO_MEMORIES:
        memory.upsert_memory(user_id, key, value, memory_type)

    print(f"✅ Seed complete for {user_id}: {len(DEMO_TASKS)} tasks, {len(DEMO_MEMORIES)} memories.")


if __name__ == "__main__":
    settings = Settings.from_env()
    user_id = sys.argv[1] if len(sys.argv) > 1 else settings.default_user_id
    try:
        seed(settings, user_id)
    except (errors.PyMongoError, StorageError) as e:
        print(f"❌ MongoDB error while seeding: {e}")
        sys.exit(1)
