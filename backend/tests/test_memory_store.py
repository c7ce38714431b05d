from datetime import timedelta

import pytest
from pymongo.errors import PyMongoError

from companion.errors import StorageError
from companion.memory import MemoryStore
from companion.models import ConversationContext
from companion.utils.dates import utcnow


def test_upsert_keeps_one_memory_per_key_and_type(memory_store, db):
    first = memory_store.upsert_memory("u1", "favourite_food", "pizza", "preference")
    second = memory_store.upsert_memory("u1", "favourite_food", "ramen", "preference")

    assert first.id == second.id
    assert second.value == "ramen"
    assert second.updated_at >= first.updated_at
    assert db["memories"].count_documents({"user_id": "u1", "key": "favourite_food", "type": "preference"}) == 1


def test_same_key_with_other_type_is_separate(memory_store, db):
    memory_store.upsert_memory("u1", "language", "spanish", "preference")
    memory_store.upsert_memory("u1", "language", "french", "conversation")
    assert db["memories"].count_documents({"user_id": "u1", "key": "language"}) == 2
    assert memory_store.get_memory("u1", "language", "conversation").value == "french"


def test_get_memory_absent(memory_store):
    assert memory_store.get_memory("u1", "nothing") is None


def test_expired_memory_is_deleted_on_read(memory_store, db):
    memory_store.upsert_memory("u1", "coupon", "SAVE10", "general", expires_at=utcnow() - timedelta(minutes=1))

    assert memory_store.get_memory("u1", "coupon") is None
    assert db["memories"].count_documents({"key": "coupon"}) == 0
    # second read is still absent and does not raise
    assert memory_store.get_memory("u1", "coupon") is None


def test_live_memory_with_future_expiry_is_returned(memory_store):
    memory_store.upsert_memory("u1", "coupon", "SAVE10", "general", expires_at=utcnow() + timedelta(days=1))
    assert memory_store.get_memory("u1", "coupon").value == "SAVE10"


def test_relevant_memories_filter_and_order(memory_store):
    memory_store.upsert_memory("u1", "colour", "blue", "preference")
    memory_store.upsert_memory("u1", "deadline", "the quarterly report is due friday", "preference")
    memory_store.upsert_memory("u1", "greeting", "said hi", "general")
    memory_store.upsert_memory("u1", "lang", "loves the coding sessions", "preference")
    memory_store.upsert_memory("u1", "hobby", "climbing on weekends", "preference")

    context = ConversationContext(
        user_id="u1",
        current_task="report",
        active_modules=["coding"],
        recent_topics=["climbing"],
    )
    relevant = memory_store.get_relevant_memories("u1", context, limit=10)

    assert [m.key for m in relevant] == ["hobby", "lang", "greeting", "deadline"]


def test_relevant_memories_skip_expired(memory_store):
    memory_store.upsert_memory("u1", "note", "old", "general", expires_at=utcnow() - timedelta(seconds=5))
    memory_store.upsert_memory("u1", "note2", "fresh", "general")

    relevant = memory_store.get_relevant_memories("u1", ConversationContext(user_id="u1"))
    assert [m.key for m in relevant] == ["note2"]


def test_relevant_memories_limit_applies_before_filter(memory_store):
    memory_store.upsert_memory("u1", "note", "relevant", "general")
    for i in range(3):
        memory_store.upsert_memory("u1", f"pref{i}", "unrelated", "preference")

    relevant = memory_store.get_relevant_memories("u1", ConversationContext(user_id="u1"), limit=3)
    assert relevant == []


def test_context_round_trip(memory_store):
    context = ConversationContext(
        user_id="u1",
        current_task="finish my report",
        mood="stressed",
        energy="low",
        recent_topics=["python", "spanish"],
        active_modules=["coding", "wellbeing"],
    )
    memory_store.store_conversation_context("u1", context)

    assert memory_store.get_conversation_context("u1") == context


def test_context_defaults_for_new_user(memory_store):
    assert memory_store.get_conversation_context("nobody") == ConversationContext(user_id="nobody")


def test_unparseable_topics_are_treated_as_absent(memory_store, caplog):
    memory_store.upsert_memory("u1", "recent_topics", "not-json[", "conversation")
    memory_store.upsert_memory("u1", "current_mood", "happy", "conversation")

    context = memory_store.get_conversation_context("u1")

    assert context.recent_topics == []
    assert context.mood == "happy"
    assert "Failed to parse recent_topics" in caplog.text


def test_empty_context_writes_nothing(memory_store, db):
    memory_store.store_conversation_context("u1", ConversationContext(user_id="u1"))
    assert db["memories"].count_documents({}) == 0


def test_recent_messages_newest_first(memory_store):
    memory_store.append_message("u1", "first", {"type": "user"})
    memory_store.append_message("u1", "second", {"type": "assistant"})
    memory_store.append_message("u2", "other user", {"type": "user"})

    messages = memory_store.recent_messages("u1", limit=10)
    assert [m.content for m in messages] == ["second", "first"]
    assert messages[0].metadata == {"type": "assistant"}


def test_reset_user_removes_everything(memory_store, db):
    memory_store.append_message("u1", "hello")
    memory_store.upsert_memory("u1", "a", "1", "preference")
    memory_store.upsert_memory("u1", "b", "2", "conversation")
    memory_store.upsert_memory("u2", "c", "3", "conversation")

    assert memory_store.reset_user("u1") is True
    assert db["conversations"].count_documents({"user_id": "u1"}) == 0
    assert db["memories"].count_documents({"user_id": "u1"}) == 0
    assert db["memories"].count_documents({"user_id": "u2"}) == 1


def test_reset_user_by_memory_type(memory_store, db):
    memory_store.append_message("u1", "hello")
    memory_store.upsert_memory("u1", "a", "1", "preference")
    memory_store.upsert_memory("u1", "b", "2", "conversation")

    memory_store.reset_user("u1", memory_type="conversation")

    assert db["conversations"].count_documents({"user_id": "u1"}) == 0
    assert [doc["key"] for doc in db["memories"].find({"user_id": "u1"})] == ["a"]


def test_reset_user_propagates_storage_errors(memory_store, mocker):
    mocker.patch.object(memory_store.conversations, "delete_many", side_effect=PyMongoError("disk full"))
    with pytest.raises(StorageError):
        memory_store.reset_user("u1")


def test_delete_memory_and_cleanup(memory_store):
    kept = memory_store.upsert_memory("u1", "a", "1")
    memory_store.upsert_memory("u1", "b", "2", expires_at=utcnow() - timedelta(hours=1))

    assert memory_store.cleanup_expired() == 1
    assert memory_store.delete_memory(kept.id) is True
    assert memory_store.delete_memory(kept.id) is False
    assert memory_store.delete_memory("not-an-id") is False


def test_memory_stats(memory_store):
    memory_store.upsert_memory("u1", "a", "1", "preference")
    memory_store.upsert_memory("u1", "b", "2", "conversation")
    memory_store.upsert_memory("u1", "c", "3", "conversation")

    stats = memory_store.memory_stats("u1")
    assert stats == {"total": 3, "byType": {"preference": 1, "conversation": 2}, "recentActivity": 3}


def test_storage_error_wraps_driver_failure(db, mocker):
    store = MemoryStore(db)
    mocker.patch.object(store.memories, "find_one_and_update", side_effect=PyMongoError("boom"))
    with pytest.raises(StorageError) as excinfo:
        store.upsert_memory("u1", "a", "1")
    assert isinstance(excinfo.value.original_error, PyMongoError)
