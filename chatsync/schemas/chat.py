from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from enum import Enum

from chatsync.schemas.types import Timestamp
from chatsync.utils.time import utcnow, as_utc


class MessageType(str, Enum):
    TEXT = "text"


class ConversationFilter(str, Enum):
    ALL = "all"
    UNREAD = "unread"
    RECENT = "recent"
    ACTIVE = "active"


class Message(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str
    message_type: MessageType = MessageType.TEXT
    timestamp: Timestamp = Field(default_factory=utcnow)
    is_read: bool = False
    is_edited: bool = False
    edited_at: Optional[Timestamp] = None
    is_deleted: bool = False
    deleted_at: Optional[Timestamp] = None

    def is_unread_for(self, user_id: str) -> bool:
        return self.receiver_id == user_id and self.sender_id != user_id and not self.is_read


class Conversation(BaseModel):
    id: str
    participants: List[str]
    last_message: Optional[str] = None
    last_message_time: Optional[Timestamp] = None
    last_message_sender_id: Optional[str] = None
    unread_count: Dict[str, int] = {}
    deleted_by: Dict[str, bool] = {}
    deleted_at: Dict[str, Optional[Timestamp]] = {}
    last_seen_by: Dict[str, Optional[Timestamp]] = {}
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)

    def other_participant(self, current_user_id: str) -> Optional[str]:
        for participant in self.participants:
            if participant != current_user_id:
                return participant
        return None

    def unread_for(self, user_id: str) -> int:
        return self.unread_count.get(user_id, 0)

    def is_deleted_by(self, user_id: str) -> bool:
        return self.deleted_by.get(user_id, False)

    def is_message_seen(self, current_user_id: str, other_user_id: str) -> bool:
        """Whether the other user has seen the last message the current user sent"""
        if self.last_message_sender_id != current_user_id or self.last_message_time is None:
            return False
        seen = self.last_seen_by.get(other_user_id)
        if seen is None:
            return False
        return as_utc(seen) >= as_utc(self.last_message_time)

    def with_unread_reset(self, user_id: str) -> "Conversation":
        unread = dict(self.unread_count)
        unread[user_id] = 0
        return self.model_copy(update={"unread_count": unread})
