from pydantic import BaseModel, Field
from typing import Any, Dict
from enum import Enum

from chatsync.schemas.types import Timestamp
from chatsync.utils.time import utcnow


class NotificationType(str, Enum):
    FRIEND_REQUEST = "friend_request"
    FRIEND_REQUEST_ACCEPTED = "friend_request_accepted"
    FRIEND_REQUEST_DECLINED = "friend_request_declined"
    NEW_MESSAGE = "new_message"
    FRIEND_REMOVED = "friend_removed"


class Notification(BaseModel):
    id: str
    user_id: str
    title: str
    body: str
    type: NotificationType
    data: Dict[str, Any] = {}
    is_read: bool = False
    created_at: Timestamp = Field(default_factory=utcnow)

    def references(self, user_id: str) -> bool:
        return self.data.get("sender_id") == user_id or self.data.get("user_id") == user_id
