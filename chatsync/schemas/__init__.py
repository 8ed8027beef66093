from chatsync.schemas.user import User, UserUpdate
from chatsync.schemas.friendship import (
    FriendRequest, FriendRequestDetail, FriendRequestStatus, Friendship, RelationshipState, pair_id
)
from chatsync.schemas.chat import Conversation, ConversationFilter, Message, MessageType
from chatsync.schemas.notification import Notification, NotificationType
from chatsync.schemas.result import OperationResult, RelationshipMutationResult, SyncError, SyncErrorKind

__all__ = [
    "User", "UserUpdate",
    "FriendRequest", "FriendRequestDetail", "FriendRequestStatus", "Friendship", "RelationshipState", "pair_id",
    "Conversation", "ConversationFilter", "Message", "MessageType",
    "Notification", "NotificationType",
    "OperationResult", "RelationshipMutationResult", "SyncError", "SyncErrorKind",
]
