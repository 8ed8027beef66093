from datetime import datetime, timezone

import pytest

from chatsync.core.config import Settings
from chatsync.core.store import Increment, MemoryDocumentStore, Query, apply_patch, create_store
from chatsync.schemas.friendship import FriendRequestStatus
from chatsync.utils.exceptions import ConflictError, NotFoundError, ValidationError


async def test_create_generates_id_and_rejects_duplicates(store):
    record_id = await store.create("notes", {"text": "first"})

    assert (await store.get_once("notes", record_id)) == {"id": record_id, "text": "first"}
    with pytest.raises(ConflictError):
        await store.create("notes", {"id": record_id, "text": "again"})


async def test_values_are_stored_json_compatible(store):
    sent_at = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    await store.set("requests", "r1", {"status": FriendRequestStatus.PENDING, "sent_at": sent_at})

    assert await store.get_once("requests", "r1") == {
        "id": "r1",
        "status": "pending",
        "sent_at": 1735787045000,
    }


async def test_update_dotted_paths_and_increment(store):
    await store.set("chats", "a_b", {"unread_count": {"a": 1}})

    await store.update("chats", "a_b", {"unread_count.a": Increment(2), "unread_count.b": Increment(1)})
    await store.update("chats", "a_b", {"last_seen_by.a": 42})

    assert await store.get_once("chats", "a_b") == {
        "id": "a_b",
        "unread_count": {"a": 3, "b": 1},
        "last_seen_by": {"a": 42},
    }


async def test_update_missing_record_raises(store):
    with pytest.raises(NotFoundError):
        await store.update("chats", "nope", {"x": 1})


def test_patch_cannot_change_id():
    with pytest.raises(ValidationError):
        apply_patch({"id": "a"}, {"id": "b"})


async def test_returned_records_are_copies(store):
    await store.set("users", "u1", {"tags": ["a"]})

    record = await store.get_once("users", "u1")
    record["tags"].append("b")

    assert (await store.get_once("users", "u1"))["tags"] == ["a"]


async def test_delete_reports_whether_anything_was_removed(store):
    await store.set("users", "u1", {})

    assert await store.delete("users", "u1") is True
    assert await store.delete("users", "u1") is False


def test_query_filters_order_and_limit():
    records = [
        {"id": "1", "owner": "a", "tags": ["x"], "at": 3},
        {"id": "2", "owner": "b", "tags": ["y"], "at": 1},
        {"id": "3", "owner": "a", "tags": ["x", "y"]},
        {"id": "4", "owner": "c", "tags": [], "at": 2},
    ]

    assert [r["id"] for r in Query().where("owner", "==", "a").apply(records)] == ["1", "3"]
    assert [r["id"] for r in Query().where("owner", "!=", "a").apply(records)] == ["2", "4"]
    assert [r["id"] for r in Query().where("owner", "in", ["b", "c"]).apply(records)] == ["2", "4"]
    assert [r["id"] for r in Query().where("tags", "array_contains", "y").apply(records)] == ["2", "3"]
    assert [r["id"] for r in Query().order_by("at", descending=True).apply(records)] == ["1", "4", "2", "3"]
    assert [r["id"] for r in Query().order_by("at").limit(2).apply(records)] == ["2", "4"]


def test_unknown_operator_is_rejected():
    with pytest.raises(ValidationError):
        Query().where("a", ">", 1)


async def test_watch_delivers_initial_and_updated_snapshots(store, settle):
    snapshots = []
    subscription = store.watch("users", Query().where("online", "==", True), snapshots.append)
    await settle()

    await store.set("users", "u1", {"online": True})
    await settle()
    await store.set("users", "u2", {"online": False})
    await settle()

    assert snapshots[0] == []
    assert [[r["id"] for r in snapshot] for snapshot in snapshots[1:]] == [["u1"], ["u1"]]
    subscription.cancel()


async def test_cancelled_watch_stops_delivering(store, settle):
    snapshots = []
    subscription = store.watch("users", None, snapshots.append)
    await settle()
    subscription.cancel()

    await store.set("users", "u1", {})
    await settle()

    assert snapshots == [[]]
    assert store.subscriptions == []


async def test_failing_callback_does_not_stop_the_subscription(store, settle):
    calls = []

    def flaky(snapshot):
        calls.append(len(snapshot))
        if len(calls) == 1:
            raise RuntimeError("boom")

    subscription = store.watch("users", None, flaky)
    await settle()
    await store.set("users", "u1", {})
    await settle()

    assert calls == [0, 1]
    subscription.cancel()


async def test_close_cancels_all_subscriptions(store):
    store.watch("a", None, lambda s: None)
    store.watch("b", None, lambda s: None)

    await store.close()

    assert store.subscriptions == []


def test_create_store_selects_backend():
    assert isinstance(create_store(Settings(STORE_BACKEND="memory")), MemoryDocumentStore)
    with pytest.raises(ValidationError):
        create_store(Settings(STORE_BACKEND="sqlite"))
