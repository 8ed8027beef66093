import logging
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from chatsync.core.store import Snapshot, Subscription
from chatsync.repositories.user import UserRepository
from chatsync.schemas.user import User

logger = logging.getLogger(__name__)

UsersListener = Callable[[Dict[str, User]], None]


class UserCache:
    """Live userId -> User map. The only writer of that map."""

    def __init__(self, repo: UserRepository):
        self.repo = repo
        self._users: Dict[str, User] = {}
        self._listeners: List[UsersListener] = []
        self._subscription: Optional[Subscription] = None

    @property
    def users(self) -> Dict[str, User]:
        return dict(self._users)

    def get(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def add_listener(self, listener: UsersListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def start(self):
        if self._subscription is None:
            self._subscription = self.repo.watch_all(self._on_snapshot)

    def stop(self):
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self._users = {}
        self._notify()

    def _on_snapshot(self, records: Snapshot):
        users: Dict[str, User] = {}
        for record in records:
            try:
                user = User.model_validate(record)
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed user record {record.get('id')}: {e}")
                continue
            users[user.id] = user
        self._users = users
        self._notify()

    def _notify(self):
        for listener in list(self._listeners):
            try:
                listener(self.users)
            except Exception as e:
                logger.error(f"User cache listener failed: {e}")
