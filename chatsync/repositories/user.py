import logging
from typing import Any, Dict, Optional

from chatsync.core.store import DocumentStore, Query, SnapshotCallback, Subscription
from chatsync.schemas.user import User, UserUpdate
from chatsync.utils.time import utcnow

logger = logging.getLogger(__name__)

USERS = "users"


class UserRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def create(self, user: User) -> User:
        """Create a new user record"""
        await self.store.set(USERS, user.id, user.model_dump())
        return user

    async def get_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID"""
        record = await self.store.get_once(USERS, user_id)
        if record is None:
            return None
        return User.model_validate(record)

    async def update(self, user_id: str, user_data: UserUpdate) -> None:
        """Update profile fields that were explicitly set"""
        update_data: Dict[str, Any] = user_data.model_dump(exclude_unset=True)
        if update_data:
            await self.store.update(USERS, user_id, update_data)

    async def update_online_status(self, user_id: str, is_online: bool) -> bool:
        """Update presence; skipped when the user record does not exist"""
        if await self.store.get_once(USERS, user_id) is None:
            logger.warning(f"User {user_id} does not exist, cannot update online status")
            return False

        await self.store.update(USERS, user_id, {
            "is_online": is_online,
            "last_seen": utcnow(),
        })
        return True

    async def delete(self, user_id: str) -> bool:
        """Delete user"""
        return await self.store.delete(USERS, user_id)

    def watch_all(self, callback: SnapshotCallback) -> Subscription:
        return self.store.watch(USERS, Query(), callback)
