import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from chatsync.core.events import EventBus, RelationshipStateChanged
from chatsync.core.store import Snapshot, Subscription
from chatsync.repositories.friendship import FriendshipRepository
from chatsync.schemas.friendship import FriendRequest, Friendship, RelationshipState
from chatsync.services.user_cache import UserCache

logger = logging.getLogger(__name__)


def resolve_all(
    current_user_id: Optional[str],
    user_ids: Iterable[str],
    friendships: Iterable[Friendship],
    sent: Iterable[FriendRequest],
    received: Iterable[FriendRequest]
) -> Dict[str, RelationshipState]:
    """Resolve the relationship of the current user with every given user.

    Precedence: blocked friendship, friendship, pending sent request, pending
    received request, none. Without a current user everything is none.
    """
    user_ids = [user_id for user_id in user_ids if user_id != current_user_id]
    if current_user_id is None:
        return {user_id: RelationshipState.NONE for user_id in user_ids}

    friendship_by_other: Dict[str, Friendship] = {}
    for friendship in friendships:
        if current_user_id in friendship.user_ids:
            friendship_by_other[friendship.other_user_id(current_user_id)] = friendship

    sent_to: Set[str] = {
        r.receiver_id for r in sent if r.is_pending and r.sender_id == current_user_id
    }
    received_from: Set[str] = {
        r.sender_id for r in received if r.is_pending and r.receiver_id == current_user_id
    }

    states: Dict[str, RelationshipState] = {}
    for user_id in user_ids:
        friendship = friendship_by_other.get(user_id)
        if friendship is not None:
            states[user_id] = RelationshipState.BLOCKED if friendship.is_blocked else RelationshipState.FRIENDS
        elif user_id in sent_to:
            states[user_id] = RelationshipState.REQUEST_SENT
        elif user_id in received_from:
            states[user_id] = RelationshipState.REQUEST_RECEIVED
        else:
            states[user_id] = RelationshipState.NONE
    return states


def resolve_relationship(
    current_user_id: Optional[str],
    target_user_id: str,
    friendships: Iterable[Friendship],
    sent: Iterable[FriendRequest],
    received: Iterable[FriendRequest]
) -> RelationshipState:
    states = resolve_all(current_user_id, [target_user_id], friendships, sent, received)
    return states.get(target_user_id, RelationshipState.NONE)


class RelationshipResolver:
    """Keeps the relationship state with every known user in sync with the
    friendship and friend request streams of the current user."""

    def __init__(self, repo: FriendshipRepository, user_cache: UserCache, events: EventBus):
        self.repo = repo
        self.user_cache = user_cache
        self.events = events
        self.current_user_id: Optional[str] = None

        self._friendships_as_user1: List[Friendship] = []
        self._friendships_as_user2: List[Friendship] = []
        self._sent: List[FriendRequest] = []
        self._received: List[FriendRequest] = []

        self._states: Dict[str, RelationshipState] = {}
        # user id -> state shown ahead of the streams
        self._overrides: Dict[str, RelationshipState] = {}
        # user ids whose remote write has not returned yet
        self._in_flight: Set[str] = set()
        # user id -> (prior, written) states of an override the streams have not caught up with
        self._unconfirmed: Dict[str, Tuple[RelationshipState, RelationshipState]] = {}
        self._subscriptions: List[Subscription] = []
        self._remove_user_listener = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def states(self) -> Dict[str, RelationshipState]:
        return dict(self._states)

    @property
    def friendships(self) -> List[Friendship]:
        return self._friendships_as_user1 + self._friendships_as_user2

    @property
    def sent_requests(self) -> List[FriendRequest]:
        return list(self._sent)

    @property
    def received_requests(self) -> List[FriendRequest]:
        return list(self._received)

    def state_for(self, user_id: str) -> RelationshipState:
        return self._states.get(user_id, RelationshipState.NONE)

    def has_pending_mutation(self, user_id: str) -> bool:
        return user_id in self._in_flight

    def pending_request_to(self, user_id: str) -> Optional[FriendRequest]:
        for request in self._sent:
            if request.receiver_id == user_id and request.is_pending:
                return request
        return None

    def pending_request_from(self, user_id: str) -> Optional[FriendRequest]:
        for request in self._received:
            if request.sender_id == user_id and request.is_pending:
                return request
        return None

    def start(self, user_id: str):
        """Subscribe to the relationship streams of a user"""
        self.stop()
        self.current_user_id = user_id
        self._remove_user_listener = self.user_cache.add_listener(self._on_users_changed)
        self._subscriptions = [
            self.repo.watch_friendships_as("user1_id", user_id, self._on_friendships_as_user1),
            self.repo.watch_friendships_as("user2_id", user_id, self._on_friendships_as_user2),
            self.repo.watch_sent_requests(user_id, self._on_sent),
            self.repo.watch_received_requests(user_id, self._on_received),
        ]
        self._states = self._compute()
        logger.info(f"Relationship resolver started for {user_id}")

    def stop(self):
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions = []
        if self._remove_user_listener is not None:
            self._remove_user_listener()
            self._remove_user_listener = None
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

        self.current_user_id = None
        self._friendships_as_user1 = []
        self._friendships_as_user2 = []
        self._sent = []
        self._received = []
        self._overrides = {}
        self._in_flight = set()
        self._unconfirmed = {}
        self._states = {}

    # Optimistic writes
    async def apply_optimistic(self, user_id: str, state: RelationshipState):
        """Show a state ahead of its remote write; recomputes keep it until released"""
        self._overrides[user_id] = state
        self._in_flight.add(user_id)
        self._unconfirmed.pop(user_id, None)
        await self._set_states({**self._states, user_id: state})

    async def release_optimistic(self, user_id: str, restore: Optional[RelationshipState] = None):
        """Drop an override, optionally restoring the state held before it"""
        self._overrides.pop(user_id, None)
        self._in_flight.discard(user_id)
        self._unconfirmed.pop(user_id, None)
        if restore is not None:
            await self._set_states({**self._states, user_id: restore})

    async def confirm_optimistic(self, user_id: str, prior_state: RelationshipState):
        """Mark the remote write done.

        The override stays until the streams resolve the user to the written
        state, or to a state that is neither prior_state nor none. A none in
        between is a stream that caught up before the others.
        """
        state = self._overrides.get(user_id)
        if state is None:
            return
        self._in_flight.discard(user_id)
        self._unconfirmed[user_id] = (prior_state, state)
        await self._recompute()

    # Stream handlers
    async def _on_friendships_as_user1(self, records: Snapshot):
        self._friendships_as_user1 = [Friendship.model_validate(r) for r in records]
        await self._recompute()

    async def _on_friendships_as_user2(self, records: Snapshot):
        self._friendships_as_user2 = [Friendship.model_validate(r) for r in records]
        await self._recompute()

    async def _on_sent(self, records: Snapshot):
        self._sent = [FriendRequest.model_validate(r) for r in records]
        await self._recompute()

    async def _on_received(self, records: Snapshot):
        self._received = [FriendRequest.model_validate(r) for r in records]
        await self._recompute()

    def _on_users_changed(self, users):
        if self.current_user_id is None:
            return
        task = asyncio.get_running_loop().create_task(self._recompute())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _known_user_ids(self) -> Set[str]:
        user_ids = set(self.user_cache.users)
        for friendship in self.friendships:
            user_ids.update(friendship.user_ids)
        user_ids.update(r.receiver_id for r in self._sent)
        user_ids.update(r.sender_id for r in self._received)
        user_ids.discard(self.current_user_id)
        return user_ids

    def _compute(self) -> Dict[str, RelationshipState]:
        states = resolve_all(
            self.current_user_id,
            self._known_user_ids(),
            self.friendships,
            self._sent,
            self._received
        )
        for user_id, (prior_state, written) in list(self._unconfirmed.items()):
            derived = states.get(user_id, RelationshipState.NONE)
            if derived == written or derived not in (prior_state, RelationshipState.NONE):
                del self._unconfirmed[user_id]
                self._overrides.pop(user_id, None)
        states.update(self._overrides)
        return states

    async def _recompute(self):
        if self.current_user_id is None:
            return
        await self._set_states(self._compute())

    async def _set_states(self, states: Dict[str, RelationshipState]):
        changed = [
            (user_id, state) for user_id, state in states.items()
            if self._states.get(user_id, RelationshipState.NONE) != state
        ]
        self._states = states
        for user_id, state in changed:
            logger.debug(f"Relationship with {user_id} is now {state.value}")
            await self.events.publish(RelationshipStateChanged(user_id=user_id, state=state))
