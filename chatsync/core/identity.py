import logging
from typing import Callable, List, Optional

from chatsync.core.security import decode_token
from chatsync.utils.exceptions import NotAuthenticatedError

logger = logging.getLogger(__name__)

IdentityCallback = Callable[[Optional[str]], None]


class Listener:
    """Handle returned by IdentityProvider.listen"""

    def __init__(self, provider: "IdentityProvider", callback: IdentityCallback):
        self._provider = provider
        self.callback = callback

    def cancel(self):
        self._provider._remove_listener(self)


class IdentityProvider:
    """Holds the authenticated user id and notifies listeners when it changes"""

    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id
        self._listeners: List[Listener] = []

    @property
    def current_user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def is_authenticated(self) -> bool:
        return self._user_id is not None

    def listen(self, callback: IdentityCallback) -> Listener:
        """Register a callback for identity changes"""
        listener = Listener(self, callback)
        self._listeners.append(listener)
        return listener

    def sign_in(self, user_id: str):
        self._set(user_id)

    def sign_in_with_token(self, token: str) -> str:
        """Sign in from a JWT access token and return the user id"""
        payload = decode_token(token)
        if not payload or payload.get("type") != "access":
            raise NotAuthenticatedError("Invalid or expired access token")

        user_id = payload.get("sub")
        if not user_id:
            raise NotAuthenticatedError("Access token has no subject")

        self._set(str(user_id))
        return str(user_id)

    def sign_out(self):
        self._set(None)

    def _set(self, user_id: Optional[str]):
        if user_id == self._user_id:
            return
        self._user_id = user_id
        logger.info(f"Identity changed to {user_id}")
        for listener in list(self._listeners):
            try:
                listener.callback(user_id)
            except Exception as e:
                logger.error(f"Identity listener failed: {e}")

    def _remove_listener(self, listener: Listener):
        if listener in self._listeners:
            self._listeners.remove(listener)
