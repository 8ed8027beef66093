from typing import Optional
from pydantic import BaseModel, EmailStr, ConfigDict, Field

from chatsync.schemas.types import Timestamp
from chatsync.utils.time import utcnow


class User(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: EmailStr
    display_name: str
    photo_url: Optional[str] = None
    is_online: bool = False
    last_seen: Timestamp = Field(default_factory=utcnow)
    created_at: Timestamp = Field(default_factory=utcnow)


class UserUpdate(BaseModel):
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
