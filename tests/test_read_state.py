from datetime import datetime, timedelta, timezone

import pytest

from chatsync.schemas.result import SyncErrorKind
from chatsync.services.conversation import ConversationAggregator
from chatsync.services.read_state import ReadStateReconciler, SessionState
from chatsync.utils.exceptions import TransientNetworkError

NOW = datetime(2025, 6, 20, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
async def aggregator(chat_repo, user_cache, events, settle):
    live = ConversationAggregator(chat_repo, user_cache, events, now=lambda: NOW)
    live.start("alice")
    await settle()
    yield live
    live.close()


@pytest.fixture
def reconciler(chat_repo, events):
    live = ReadStateReconciler(chat_repo, events)
    live.start("alice")
    yield live
    live.stop()


async def receive(chat_repo, sender, content):
    """Write a message from sender to alice the way a send does"""
    message = await chat_repo.create_message(sender, "alice", content)
    conversation = await chat_repo.create_or_get_conversation(sender, "alice")
    await chat_repo.update_last_message(conversation.id, message)
    await chat_repo.increment_unread_count(conversation.id, "alice")
    return message


async def test_opening_a_conversation_zeroes_its_counter(aggregator, reconciler, chat_repo, store, settle):
    for content in ("hey", "are you there?", "ping"):
        await receive(chat_repo, "bob", content)
    await receive(chat_repo, "carol", "lunch?")
    await settle()
    assert aggregator.get("alice_bob").unread_count == {"alice": 3, "bob": 0}
    assert aggregator.total_unread_count() == 4

    session = reconciler.open_session("alice_bob")
    await settle()
    await session.activate()
    await settle()

    stored = store.collections["chats"]["alice_bob"]
    assert stored["unread_count"] == {"alice": 0, "bob": 0}
    assert aggregator.get("alice_bob").unread_for("alice") == 0
    assert aggregator.total_unread_count() == 1
    assert all(m.is_read for m in session.messages)


async def test_local_copy_is_zeroed_before_the_store_write(aggregator, reconciler, chat_repo, settle, monkeypatch):
    await receive(chat_repo, "bob", "hey")
    await settle()
    seen_by_write = []
    original = chat_repo.reset_unread_count

    async def observing_reset(conversation_id, user_id):
        seen_by_write.append(aggregator.total_unread_count())
        await original(conversation_id, user_id)

    monkeypatch.setattr(chat_repo, "reset_unread_count", observing_reset)

    await reconciler.reset_unread("alice_bob")

    assert seen_by_write == [0]


async def test_reset_twice_is_the_same_as_once(aggregator, reconciler, chat_repo, store, settle):
    await receive(chat_repo, "bob", "one")
    await receive(chat_repo, "bob", "two")
    await settle()

    first = await reconciler.reset_unread("alice_bob")
    await settle()
    after_once = store.collections["chats"]["alice_bob"]["unread_count"]
    second = await reconciler.reset_unread("alice_bob")
    await settle()

    assert first.ok and second.ok
    assert store.collections["chats"]["alice_bob"]["unread_count"] == after_once == {"alice": 0, "bob": 0}
    assert aggregator.total_unread_count() == sum(c.unread_for("alice") for c in aggregator.conversations) == 0


async def test_failed_reset_is_reported_not_rolled_back(aggregator, reconciler, chat_repo, reported, settle, monkeypatch):
    await receive(chat_repo, "bob", "hey")
    await settle()

    async def failing_reset(*args):
        raise TransientNetworkError("timeout")

    monkeypatch.setattr(chat_repo, "reset_unread_count", failing_reset)

    result = await reconciler.reset_unread("alice_bob")

    assert result.error.kind == SyncErrorKind.TRANSIENT
    assert reported[0].operation == "reset_unread"
    assert aggregator.total_unread_count() == 0


async def test_mark_messages_read_continues_past_failures(reconciler, chat_repo, store, reported, monkeypatch):
    first = await receive(chat_repo, "bob", "one")
    second = await receive(chat_repo, "bob", "two")
    own = await chat_repo.create_message("alice", "bob", "mine")
    original = chat_repo.mark_message_as_read

    async def flaky_mark(message_id):
        if message_id == first.id:
            raise TransientNetworkError("dropped")
        await original(message_id)

    monkeypatch.setattr(chat_repo, "mark_message_as_read", flaky_mark)

    marked = await reconciler.mark_messages_read([first, second, own])

    assert marked == 1
    assert store.collections["messages"][second.id]["is_read"] is True
    assert store.collections["messages"][first.id]["is_read"] is False
    assert store.collections["messages"][own.id]["is_read"] is False
    assert len(reported) == 1


async def test_active_session_marks_incoming_messages_read(reconciler, chat_repo, store, settle):
    await receive(chat_repo, "bob", "before")
    session = reconciler.open_session("alice_bob")
    await settle()
    await session.activate()
    await settle()

    late = await receive(chat_repo, "bob", "while you were looking")
    await settle()

    assert store.collections["messages"][late.id]["is_read"] is True
    assert store.collections["chats"]["alice_bob"]["unread_count"]["alice"] == 0
    assert [m.content for m in session.messages] == ["before", "while you were looking"]


async def test_inactive_session_leaves_messages_unread(reconciler, chat_repo, store, settle):
    session = reconciler.open_session("alice_bob")
    await settle()
    message = await receive(chat_repo, "bob", "hello")
    await settle()

    assert session.state == SessionState.INACTIVE
    assert store.collections["messages"][message.id]["is_read"] is False
    assert store.collections["chats"]["alice_bob"]["unread_count"]["alice"] == 1


async def test_deactivate_resets_once_more(reconciler, chat_repo, store, settle, monkeypatch):
    await receive(chat_repo, "bob", "hi")
    session = reconciler.open_session("alice_bob")
    await settle()
    await session.activate()
    await settle()
    resets = []
    original = chat_repo.reset_unread_count

    async def counting_reset(conversation_id, user_id):
        resets.append(conversation_id)
        await original(conversation_id, user_id)

    monkeypatch.setattr(chat_repo, "reset_unread_count", counting_reset)

    await session.close()

    assert resets == ["alice_bob"]
    assert "alice_bob" not in reconciler.sessions


async def test_pause_and_resume(reconciler, chat_repo, store, settle):
    await receive(chat_repo, "bob", "hi")
    session = reconciler.open_session("alice_bob")
    await settle()
    await session.activate()
    await settle()

    await reconciler.pause_all()
    assert session.state == SessionState.INACTIVE

    message = await receive(chat_repo, "bob", "you there?")
    await settle()
    assert store.collections["messages"][message.id]["is_read"] is False

    await reconciler.resume_all()
    await settle()
    assert session.state == SessionState.ACTIVE
    assert store.collections["messages"][message.id]["is_read"] is True


async def test_messages_before_deletion_are_hidden(reconciler, chat_repo, store, settle):
    await receive(chat_repo, "bob", "old news")
    await store.update("chats", "alice_bob", {
        "deleted_at.alice": datetime.now(timezone.utc) + timedelta(seconds=1),
    })
    session = reconciler.open_session("alice_bob")
    await settle()

    assert session.messages == []


async def test_no_identity_is_a_no_op(chat_repo, events, store):
    reconciler = ReadStateReconciler(chat_repo, events)

    result = await reconciler.reset_unread("alice_bob")

    assert result.error.kind == SyncErrorKind.NOT_AUTHENTICATED
    assert "chats" not in store.collections
    assert reconciler.open_session("alice_bob") is None
    assert reconciler.sessions == {}
    assert store.subscriptions == []


async def test_mark_conversation_read_flags_messages_and_zeroes(aggregator, reconciler, chat_repo, store, settle):
    first = await receive(chat_repo, "bob", "one")
    second = await receive(chat_repo, "bob", "two")
    await settle()

    result = await reconciler.mark_conversation_read("alice_bob")
    await settle()

    assert result.ok
    assert store.collections["messages"][first.id]["is_read"] is True
    assert store.collections["messages"][second.id]["is_read"] is True
    assert store.collections["chats"]["alice_bob"]["unread_count"]["alice"] == 0
    assert aggregator.total_unread_count() == 0
