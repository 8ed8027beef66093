import logging
from typing import Callable, List, Optional

from chatsync.core.events import EventBus
from chatsync.core.store import Snapshot, Subscription
from chatsync.repositories.notification import NotificationRepository
from chatsync.schemas.notification import Notification
from chatsync.schemas.result import OperationResult, SyncErrorKind

logger = logging.getLogger(__name__)

NotificationsListener = Callable[[List[Notification]], None]


class NotificationCenter:
    """Live notifications of the current user"""

    def __init__(self, repo: NotificationRepository, events: EventBus):
        self.repo = repo
        self.events = events
        self.current_user_id: Optional[str] = None
        self._notifications: List[Notification] = []
        self._listeners: List[NotificationsListener] = []
        self._subscription: Optional[Subscription] = None

    @property
    def notifications(self) -> List[Notification]:
        return list(self._notifications)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._notifications if not n.is_read)

    def get(self, notification_id: str) -> Optional[Notification]:
        for notification in self._notifications:
            if notification.id == notification_id:
                return notification
        return None

    def add_listener(self, listener: NotificationsListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def start(self, user_id: str):
        self.stop()
        self.current_user_id = user_id
        self._subscription = self.repo.watch_for_user(user_id, self._on_snapshot)

    def stop(self):
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self.current_user_id = None
        self._notifications = []

    async def mark_as_read(self, notification_id: str) -> OperationResult:
        """Mark one notification read; already read ones are left alone"""
        if self.current_user_id is None:
            return OperationResult.failure(SyncErrorKind.NOT_AUTHENTICATED, "No signed in user", "mark_as_read")
        notification = self.get(notification_id)
        if notification is not None and notification.is_read:
            return OperationResult.success()
        return await self.events.guard("mark_as_read", lambda: self.repo.mark_as_read(notification_id))

    async def mark_all_as_read(self) -> OperationResult:
        me = self.current_user_id
        if me is None:
            return OperationResult.failure(SyncErrorKind.NOT_AUTHENTICATED, "No signed in user", "mark_all_as_read")
        return await self.events.guard("mark_all_as_read", lambda: self.repo.mark_all_as_read(me))

    async def delete(self, notification_id: str) -> OperationResult:
        if self.current_user_id is None:
            return OperationResult.failure(SyncErrorKind.NOT_AUTHENTICATED, "No signed in user", "delete_notification")
        return await self.events.guard("delete_notification", lambda: self.repo.delete(notification_id))

    def _on_snapshot(self, records: Snapshot):
        self._notifications = [Notification.model_validate(record) for record in records]
        for listener in list(self._listeners):
            try:
                listener(self.notifications)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}")
