import logging
from typing import List, Optional

from chatsync.core.events import EventBus
from chatsync.repositories.friendship import FriendshipRepository
from chatsync.schemas.friendship import FriendRequest, FriendRequestDetail, FriendRequestStatus, RelationshipState
from chatsync.schemas.result import OperationResult, RelationshipMutationResult, SyncErrorKind
from chatsync.schemas.user import User
from chatsync.services.optimistic import OptimisticMutation
from chatsync.services.relationship import RelationshipResolver
from chatsync.services.user_cache import UserCache
from chatsync.utils.exceptions import MissingRecordError, ValidationError

logger = logging.getLogger(__name__)


class FriendshipService:

    def __init__(
        self,
        repo: FriendshipRepository,
        resolver: RelationshipResolver,
        user_cache: UserCache,
        events: EventBus
    ):
        self.repo = repo
        self.resolver = resolver
        self.user_cache = user_cache
        self.events = events
        self.mutation = OptimisticMutation(resolver, events)

    @property
    def current_user_id(self) -> Optional[str]:
        return self.resolver.current_user_id

    # Optimistic request actions
    async def send_friend_request(self, user_id: str, message: Optional[str] = None) -> RelationshipMutationResult:
        """Send a friend request, showing requestSent immediately"""
        me = self.current_user_id

        async def write():
            if me == user_id:
                raise ValidationError("Cannot send friend request to yourself")
            return await self.repo.send_friend_request(me, user_id, message)

        return await self.mutation.run(
            "send_friend_request", user_id,
            RelationshipState.NONE, RelationshipState.REQUEST_SENT, write
        )

    async def cancel_friend_request(self, user_id: str) -> RelationshipMutationResult:
        me = self.current_user_id

        async def write():
            request = self.resolver.pending_request_to(user_id) or await self.repo.get_pending_request(me, user_id)
            if request is None:
                raise MissingRecordError(f"No pending friend request to {user_id}")
            return await self.repo.cancel_friend_request(request.id)

        return await self.mutation.run(
            "cancel_friend_request", user_id,
            RelationshipState.REQUEST_SENT, RelationshipState.NONE, write
        )

    async def accept_friend_request(self, user_id: str) -> RelationshipMutationResult:
        return await self._respond(
            "accept_friend_request", user_id, FriendRequestStatus.ACCEPTED, RelationshipState.FRIENDS
        )

    async def decline_friend_request(self, user_id: str) -> RelationshipMutationResult:
        return await self._respond(
            "decline_friend_request", user_id, FriendRequestStatus.DECLINED, RelationshipState.NONE
        )

    async def _respond(
        self,
        operation: str,
        user_id: str,
        status: FriendRequestStatus,
        new_state: RelationshipState
    ) -> RelationshipMutationResult:
        me = self.current_user_id

        async def write():
            request = self.resolver.pending_request_from(user_id) or await self.repo.get_pending_request(user_id, me)
            if request is None:
                raise MissingRecordError(f"No pending friend request from {user_id}")
            return await self.repo.respond_to_friend_request(request.id, status)

        return await self.mutation.run(operation, user_id, RelationshipState.REQUEST_RECEIVED, new_state, write)

    # Friendship actions
    async def remove_friend(self, user_id: str) -> OperationResult:
        me = self.current_user_id
        if me is None:
            return OperationResult.failure(SyncErrorKind.NOT_AUTHENTICATED, "No signed in user", "remove_friend")
        return await self.events.guard("remove_friend", lambda: self.repo.remove_friendship(me, user_id))

    async def block_user(self, user_id: str) -> OperationResult:
        me = self.current_user_id
        if me is None:
            return OperationResult.failure(SyncErrorKind.NOT_AUTHENTICATED, "No signed in user", "block_user")
        return await self.events.guard("block_user", lambda: self.repo.block_user(me, user_id))

    async def unblock_user(self, user_id: str) -> OperationResult:
        me = self.current_user_id
        if me is None:
            return OperationResult.failure(SyncErrorKind.NOT_AUTHENTICATED, "No signed in user", "unblock_user")
        return await self.events.guard("unblock_user", lambda: self.repo.unblock_user(me, user_id))

    # Views
    def friends(self, query: Optional[str] = None) -> List[User]:
        """Friends of the current user, optionally filtered by name or email"""
        me = self.current_user_id
        if me is None:
            return []

        needle = (query or "").strip().lower()
        friends = []
        for friendship in self.resolver.friendships:
            if friendship.is_blocked:
                continue
            friend_id = friendship.other_user_id(me)
            user = self.user_cache.get(friend_id)
            if user is None:
                logger.warning(f"Friend {friend_id} is missing from the user cache, skipping")
                continue
            if needle and needle not in user.display_name.lower() and needle not in user.email.lower():
                continue
            friends.append(user)
        return friends

    def blocked_users(self) -> List[User]:
        """Users the current user has blocked"""
        me = self.current_user_id
        if me is None:
            return []
        blocked = []
        for friendship in self.resolver.friendships:
            if friendship.is_blocked_by(me):
                user = self.user_cache.get(friendship.other_user_id(me))
                if user is not None:
                    blocked.append(user)
        return blocked

    def incoming_requests(self) -> List[FriendRequestDetail]:
        return self._join(self.resolver.received_requests, lambda r: r.sender_id)

    def outgoing_requests(self) -> List[FriendRequestDetail]:
        return self._join(self.resolver.sent_requests, lambda r: r.receiver_id)

    def _join(self, requests: List[FriendRequest], counterpart) -> List[FriendRequestDetail]:
        details = []
        for request in requests:
            user = self.user_cache.get(counterpart(request))
            if user is None:
                logger.warning(f"Friend request {request.id} references unknown user {counterpart(request)}, skipping")
                continue
            details.append(FriendRequestDetail(request=request, user=user))
        return details
