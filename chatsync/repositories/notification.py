import logging
import uuid
from typing import Any, Dict, Optional

from chatsync.core.store import DocumentStore, Query, SnapshotCallback, Subscription
from chatsync.schemas.notification import Notification, NotificationType

logger = logging.getLogger(__name__)

NOTIFICATIONS = "notifications"


class NotificationRepository:

    def __init__(self, store: DocumentStore):
        self.store = store

    async def create(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """Create a notification for a recipient"""
        notification = Notification(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            body=body,
            type=notification_type,
            data=data or {}
        )
        await self.store.create(NOTIFICATIONS, notification.model_dump())
        return notification

    def watch_for_user(self, user_id: str, callback: SnapshotCallback) -> Subscription:
        query = Query().where("user_id", "==", user_id).order_by("created_at", descending=True)
        return self.store.watch(NOTIFICATIONS, query, callback)

    async def mark_as_read(self, notification_id: str) -> None:
        await self.store.update(NOTIFICATIONS, notification_id, {"is_read": True})

    async def mark_all_as_read(self, user_id: str) -> int:
        """Mark every unread notification of a user as read"""
        query = Query().where("user_id", "==", user_id).where("is_read", "==", False)
        unread = await self.store.query(NOTIFICATIONS, query)
        for record in unread:
            await self.store.update(NOTIFICATIONS, record["id"], {"is_read": True})
        return len(unread)

    async def delete(self, notification_id: str) -> bool:
        return await self.store.delete(NOTIFICATIONS, notification_id)

    async def delete_by_type_and_user(
        self,
        user_id: str,
        notification_type: NotificationType,
        related_user_id: str
    ) -> int:
        """Delete a user's notifications of one type that reference another user"""
        query = Query().where("user_id", "==", user_id).where("type", "==", notification_type)
        deleted = 0
        for record in await self.store.query(NOTIFICATIONS, query):
            notification = Notification.model_validate(record)
            if notification.references(related_user_id):
                if await self.store.delete(NOTIFICATIONS, notification.id):
                    deleted += 1
        return deleted
