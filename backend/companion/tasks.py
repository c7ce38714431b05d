# companion/tasks.py
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from .errors import NotFoundError, StorageError, ValidationError
from .models import Task, TaskCreate, TaskUpdate
from .utils.dates import to_naive_utc, utcnow
from .utils.db import TASKS

logger = logging.getLogger(__name__)

PRIORITY_RANK = {"high": 3, "medium": 2, "low": 1}
REQUIRED_FIELDS = ("title", "category", "priority", "status")


def _to_task(doc: Dict[str, Any]) -> Task:
    return Task(id=str(doc["_id"]), **{k: v for k, v in doc.items() if k != "_id"})


def _object_id(task_id: str) -> ObjectId:
    try:
        return ObjectId(task_id)
    except (InvalidId, TypeError) as e:
        raise NotFoundError(f"Task {task_id} not found", e) from e


def _sort_key(task: Task):
    # priority desc, due date asc (undated last), newest first
    due = task.due_date
    return (
        -PRIORITY_RANK.get(task.priority, 0),
        due is None,
        due or datetime.min,
        -task.created_at.timestamp(),
    )


class TaskStore:
    def __init__(self, db: Database):
        self.tasks = db[TASKS]

    def list_tasks(
        self,
        user_id: str,
        status: Optional[str] = None,
        category: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> List[Task]:
        query: Dict[str, Any] = {"user_id": user_id}
        if status:
            query["status"] = status
        if category:
            query["category"] = category
        if priority:
            query["priority"] = priority

        try:
            tasks = [_to_task(doc) for doc in self.tasks.find(query)]
        except PyMongoError as e:
            raise StorageError("Failed to fetch tasks", e) from e
        return sorted(tasks, key=_sort_key)

    def create_task(self, user_id: str, data: TaskCreate) -> Task:
        now = utcnow()
        doc = {
            "user_id": user_id,
            "title": data.title,
            "description": data.description,
            "category": data.category,
            "priority": data.priority,
            "status": "pending",
            "due_date": to_naive_utc(data.due_date),
            "completed_at": None,
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = self.tasks.insert_one(doc)
        except PyMongoError as e:
            raise StorageError("Failed to create task", e) from e

        doc["_id"] = result.inserted_id
        logger.info(f"Created task {result.inserted_id} for user {user_id}")
        return _to_task(doc)

    def get_task(self, user_id: str, task_id: str) -> Task:
        try:
            doc = self.tasks.find_one({"_id": _object_id(task_id), "user_id": user_id})
        except PyMongoError as e:
            raise StorageError("Failed to fetch task", e) from e
        if doc is None:
            raise NotFoundError(f"Task {task_id} not found")
        return _to_task(doc)

    def update_task(self, user_id: str, task_id: str, data: TaskUpdate) -> Task:
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("No fields to update", ["At least one field must be provided"])
        nulls = [name for name in REQUIRED_FIELDS if name in changes and changes[name] is None]
        if nulls:
            raise ValidationError("Invalid task update", [f"{name}: must not be null" for name in nulls])

        current = self.get_task(user_id, task_id)

        if "due_date" in changes:
            changes["due_date"] = to_naive_utc(changes["due_date"])

        if "status" in changes:
            if changes["status"] == "completed":
                if current.status != "completed":
                    changes["completed_at"] = utcnow()
            else:
                changes["completed_at"] = None

        changes["updated_at"] = utcnow()

        try:
            doc = self.tasks.find_one_and_update(
                {"_id": ObjectId(current.id), "user_id": user_id},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise StorageError("Failed to update task", e) from e
        if doc is None:
            raise NotFoundError(f"Task {task_id} not found")
        return _to_task(doc)

    def delete_task(self, user_id: str, task_id: str) -> bool:
        try:
            result = self.tasks.delete_one({"_id": _object_id(task_id), "user_id": user_id})
        except PyMongoError as e:
            raise StorageError("Failed to delete task", e) from e
        if result.deleted_count != 1:
            raise NotFoundError(f"Task {task_id} not found")
        return True
