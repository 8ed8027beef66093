from pydantic import BaseModel, Field
from typing import Optional, Tuple
from enum import Enum

from chatsync.schemas.types import Timestamp
from chatsync.schemas.user import User
from chatsync.utils.time import utcnow


class FriendRequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class RelationshipState(str, Enum):
    """Derived relationship between the current user and another user. Never persisted."""
    NONE = "none"
    REQUEST_SENT = "requestSent"
    REQUEST_RECEIVED = "requestReceived"
    FRIENDS = "friends"
    BLOCKED = "blocked"


def pair_id(user_a: str, user_b: str) -> str:
    """Deterministic id for an unordered pair of users"""
    first, second = sorted([user_a, user_b])
    return f"{first}_{second}"


class FriendRequest(BaseModel):
    id: str
    sender_id: str
    receiver_id: str
    status: FriendRequestStatus = FriendRequestStatus.PENDING
    created_at: Timestamp = Field(default_factory=utcnow)
    responded_at: Optional[Timestamp] = None
    message: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == FriendRequestStatus.PENDING


class Friendship(BaseModel):
    id: str
    user1_id: str
    user2_id: str
    created_at: Timestamp = Field(default_factory=utcnow)
    is_blocked: bool = False
    blocked_by: Optional[str] = None

    @classmethod
    def for_pair(cls, user_a: str, user_b: str) -> "Friendship":
        first, second = sorted([user_a, user_b])
        return cls(id=pair_id(first, second), user1_id=first, user2_id=second)

    @property
    def user_ids(self) -> Tuple[str, str]:
        return self.user1_id, self.user2_id

    def other_user_id(self, current_user_id: str) -> str:
        return self.user2_id if current_user_id == self.user1_id else self.user1_id

    def is_blocked_by(self, user_id: str) -> bool:
        return self.is_blocked and self.blocked_by == user_id


class FriendRequestDetail(BaseModel):
    """A friend request joined with the user on the other side of it"""
    request: FriendRequest
    user: User
