import pytest

from chatsync.core.events import RelationshipStateChanged
from chatsync.schemas.friendship import FriendRequest, FriendRequestStatus, Friendship, RelationshipState
from chatsync.services.relationship import RelationshipResolver, resolve_all, resolve_relationship


def friendship(a, b, blocked=False, blocked_by=None):
    return Friendship.for_pair(a, b).model_copy(update={"is_blocked": blocked, "blocked_by": blocked_by})


def request(sender, receiver, status=FriendRequestStatus.PENDING):
    return FriendRequest(id=f"{sender}-{receiver}", sender_id=sender, receiver_id=receiver, status=status)


def test_blocked_friendship_wins_over_pending_request():
    friendships = [friendship("alice", "bob", blocked=True, blocked_by="bob")]
    sent = [request("alice", "bob")]

    state = resolve_relationship("alice", "bob", friendships, sent, [])

    assert state == RelationshipState.BLOCKED


def test_friendship_wins_over_stale_requests():
    friendships = [friendship("alice", "bob")]
    sent = [request("alice", "bob")]
    received = [request("bob", "alice")]

    assert resolve_relationship("alice", "bob", friendships, sent, received) == RelationshipState.FRIENDS


def test_unblocked_friendship_is_friends():
    friendships = [Friendship(id="alice_bob", user1_id="alice", user2_id="bob")]

    assert resolve_relationship("alice", "bob", friendships, [], []) == RelationshipState.FRIENDS
    assert resolve_relationship("bob", "alice", friendships, [], []) == RelationshipState.FRIENDS


def test_pending_request_seen_from_both_sides():
    pending = [request("alice", "bob")]

    assert resolve_relationship("alice", "bob", [], pending, []) == RelationshipState.REQUEST_SENT
    assert resolve_relationship("bob", "alice", [], [], pending) == RelationshipState.REQUEST_RECEIVED


def test_answered_requests_are_ignored():
    declined = [request("alice", "bob", FriendRequestStatus.DECLINED)]

    assert resolve_relationship("alice", "bob", [], declined, []) == RelationshipState.NONE


def test_every_known_user_gets_exactly_one_state():
    user_ids = ["bob", "carol", "dave", "erin", "alice"]
    friendships = [friendship("alice", "bob"), friendship("alice", "dave", blocked=True, blocked_by="alice")]
    sent = [request("alice", "carol")]
    received = [request("erin", "alice")]

    states = resolve_all("alice", user_ids, friendships, sent, received)

    assert states == {
        "bob": RelationshipState.FRIENDS,
        "carol": RelationshipState.REQUEST_SENT,
        "dave": RelationshipState.BLOCKED,
        "erin": RelationshipState.REQUEST_RECEIVED,
    }
    assert all(isinstance(state, RelationshipState) for state in states.values())


def test_no_identity_resolves_everyone_to_none():
    states = resolve_all(None, ["bob", "carol"], [friendship("alice", "bob")], [], [])

    assert states == {"bob": RelationshipState.NONE, "carol": RelationshipState.NONE}


@pytest.fixture
async def resolver(friendship_repo, user_cache, events):
    live = RelationshipResolver(friendship_repo, user_cache, events)
    live.start("alice")
    yield live
    live.stop()


async def test_resolver_starts_with_none_for_known_users(resolver, settle):
    await settle()

    assert resolver.states == {
        "bob": RelationshipState.NONE,
        "carol": RelationshipState.NONE,
        "dave": RelationshipState.NONE,
    }
    assert resolver.state_for("someone-new") == RelationshipState.NONE


async def test_resolver_follows_the_streams(resolver, friendship_repo, settle):
    await friendship_repo.send_friend_request("alice", "bob")
    incoming = await friendship_repo.send_friend_request("carol", "alice")
    await friendship_repo.create_friendship("dave", "alice")
    await settle()

    assert resolver.state_for("bob") == RelationshipState.REQUEST_SENT
    assert resolver.state_for("carol") == RelationshipState.REQUEST_RECEIVED
    assert resolver.state_for("dave") == RelationshipState.FRIENDS
    assert resolver.pending_request_from("carol").id == incoming.id

    await friendship_repo.block_user("dave", "alice")
    await friendship_repo.respond_to_friend_request(incoming.id, FriendRequestStatus.ACCEPTED)
    await settle()

    assert resolver.state_for("dave") == RelationshipState.BLOCKED
    assert resolver.state_for("carol") == RelationshipState.FRIENDS
    assert resolver.pending_request_from("carol") is None


async def test_resolver_publishes_changed_states(resolver, friendship_repo, events, settle):
    changes = []
    events.subscribe(RelationshipStateChanged, changes.append)
    await settle()

    await friendship_repo.send_friend_request("alice", "carol")
    await settle()

    assert RelationshipStateChanged(user_id="carol", state=RelationshipState.REQUEST_SENT) in changes
    assert all(change.user_id == "carol" for change in changes)


async def test_resolver_stop_clears_state(resolver, friendship_repo, settle):
    await friendship_repo.create_friendship("alice", "bob")
    await settle()
    assert resolver.state_for("bob") == RelationshipState.FRIENDS

    resolver.stop()

    assert resolver.states == {}
    assert resolver.current_user_id is None
    assert resolver.state_for("bob") == RelationshipState.NONE


async def test_removed_user_drops_out_of_the_state_map(resolver, user_repo, user_cache, settle):
    await settle()
    assert "dave" in resolver.states

    assert await user_repo.delete("dave")
    await settle()

    assert user_cache.get("dave") is None
    assert "dave" not in resolver.states
