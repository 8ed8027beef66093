import logging
import uuid
from typing import List, Optional

from chatsync.core.store import DocumentStore, Query, SnapshotCallback, Subscription
from chatsync.repositories.notification import NotificationRepository
from chatsync.schemas.friendship import FriendRequest, FriendRequestStatus, Friendship, pair_id
from chatsync.schemas.notification import NotificationType
from chatsync.utils.exceptions import ConflictError, NotFoundError, ValidationError
from chatsync.utils.time import utcnow

logger = logging.getLogger(__name__)

FRIEND_REQUESTS = "friend_requests"
FRIENDSHIPS = "friendships"


class FriendshipRepository:

    def __init__(self, store: DocumentStore, notifications: Optional[NotificationRepository] = None):
        self.store = store
        self.notifications = notifications or NotificationRepository(store)

    async def send_friend_request(
        self,
        sender_id: str,
        receiver_id: str,
        message: Optional[str] = None
    ) -> FriendRequest:
        """Create a pending friend request and notify the receiver"""
        if sender_id == receiver_id:
            raise ValidationError("Cannot send friend request to yourself")

        request = FriendRequest(
            id=str(uuid.uuid4()),
            sender_id=sender_id,
            receiver_id=receiver_id,
            message=message
        )
        await self.store.create(FRIEND_REQUESTS, request.model_dump())

        await self.notifications.create(
            receiver_id,
            NotificationType.FRIEND_REQUEST,
            "New Friend Request",
            "You have received a new friend request",
            {"sender_id": sender_id, "request_id": request.id}
        )
        return request

    async def get_friend_request(self, request_id: str) -> Optional[FriendRequest]:
        record = await self.store.get_once(FRIEND_REQUESTS, request_id)
        if record is None:
            return None
        return FriendRequest.model_validate(record)

    async def get_pending_request(self, sender_id: str, receiver_id: str) -> Optional[FriendRequest]:
        """Get the pending request from sender to receiver, if any"""
        query = (
            Query()
            .where("sender_id", "==", sender_id)
            .where("receiver_id", "==", receiver_id)
            .where("status", "==", FriendRequestStatus.PENDING)
            .limit(1)
        )
        records = await self.store.query(FRIEND_REQUESTS, query)
        return FriendRequest.model_validate(records[0]) if records else None

    async def cancel_friend_request(self, request_id: str) -> bool:
        """Delete a pending request together with the receiver's notification"""
        request = await self.get_friend_request(request_id)
        if request is None:
            return False
        if not request.is_pending:
            raise ConflictError(f"Friend request {request_id} is already {request.status.value}")

        await self.store.delete(FRIEND_REQUESTS, request_id)
        await self.notifications.delete_by_type_and_user(
            request.receiver_id, NotificationType.FRIEND_REQUEST, request.sender_id
        )
        return True

    async def respond_to_friend_request(self, request_id: str, status: FriendRequestStatus) -> FriendRequest:
        """Move a pending request to accepted or declined.

        Accepting creates the friendship. Either way the sender is notified and the
        receiver's request notification is removed.
        """
        if status == FriendRequestStatus.PENDING:
            raise ValidationError("A friend request can only be accepted or declined")

        request = await self.get_friend_request(request_id)
        if request is None:
            raise NotFoundError(f"Friend request {request_id} not found")
        if not request.is_pending:
            raise ConflictError(f"Friend request {request_id} is already {request.status.value}")

        responded_at = utcnow()
        await self.store.update(FRIEND_REQUESTS, request_id, {
            "status": status,
            "responded_at": responded_at,
        })

        if status == FriendRequestStatus.ACCEPTED:
            await self.create_friendship(request.sender_id, request.receiver_id)
            await self.notifications.create(
                request.sender_id,
                NotificationType.FRIEND_REQUEST_ACCEPTED,
                "Friend Request Accepted",
                "Your friend request has been accepted",
                {"user_id": request.receiver_id}
            )
        else:
            await self.notifications.create(
                request.sender_id,
                NotificationType.FRIEND_REQUEST_DECLINED,
                "Friend Request Declined",
                "Your friend request has been declined",
                {"user_id": request.receiver_id}
            )

        await self.notifications.delete_by_type_and_user(
            request.receiver_id, NotificationType.FRIEND_REQUEST, request.sender_id
        )
        return request.model_copy(update={"status": status, "responded_at": responded_at})

    async def create_friendship(self, user_a: str, user_b: str) -> Friendship:
        """Create the friendship for a pair; the pair id keeps it unique"""
        friendship = Friendship.for_pair(user_a, user_b)
        await self.store.set(FRIENDSHIPS, friendship.id, friendship.model_dump())
        return friendship

    async def get_friendship(self, user_a: str, user_b: str) -> Optional[Friendship]:
        record = await self.store.get_once(FRIENDSHIPS, pair_id(user_a, user_b))
        if record is None:
            return None
        return Friendship.model_validate(record)

    async def remove_friendship(self, user_id: str, friend_id: str) -> bool:
        """Delete the friendship and tell the other user"""
        deleted = await self.store.delete(FRIENDSHIPS, pair_id(user_id, friend_id))
        if deleted:
            await self.notifications.create(
                friend_id,
                NotificationType.FRIEND_REMOVED,
                "Friend Removed",
                "You are no longer friends",
                {"user_id": user_id}
            )
        return deleted

    async def block_user(self, blocker_id: str, blocked_id: str) -> None:
        """Flag the friendship as blocked; the record itself is kept"""
        await self.store.update(FRIENDSHIPS, pair_id(blocker_id, blocked_id), {
            "is_blocked": True,
            "blocked_by": blocker_id,
        })

    async def unblock_user(self, user_id: str, other_user_id: str) -> None:
        await self.store.update(FRIENDSHIPS, pair_id(user_id, other_user_id), {
            "is_blocked": False,
            "blocked_by": None,
        })

    async def is_user_blocked(self, user_id: str, other_user_id: str) -> bool:
        friendship = await self.get_friendship(user_id, other_user_id)
        return friendship is not None and friendship.is_blocked

    async def is_unfriended(self, user_id: str, other_user_id: str) -> bool:
        """True when no friendship record exists for the pair"""
        return await self.get_friendship(user_id, other_user_id) is None

    def watch_friendships_as(self, field: str, user_id: str, callback: SnapshotCallback) -> Subscription:
        """Watch friendships where the user sits in user1_id or user2_id"""
        if field not in ("user1_id", "user2_id"):
            raise ValidationError(f"Unknown friendship field: {field}")
        return self.store.watch(FRIENDSHIPS, Query().where(field, "==", user_id), callback)

    def watch_sent_requests(self, user_id: str, callback: SnapshotCallback) -> Subscription:
        query = (
            Query()
            .where("sender_id", "==", user_id)
            .where("status", "==", FriendRequestStatus.PENDING)
            .order_by("created_at", descending=True)
        )
        return self.store.watch(FRIEND_REQUESTS, query, callback)

    def watch_received_requests(self, user_id: str, callback: SnapshotCallback) -> Subscription:
        query = (
            Query()
            .where("receiver_id", "==", user_id)
            .where("status", "==", FriendRequestStatus.PENDING)
            .order_by("created_at", descending=True)
        )
        return self.store.watch(FRIEND_REQUESTS, query, callback)
