import logging
from typing import Optional

from chatsync.core.config import Settings, settings as default_settings
from chatsync.core.events import EventBus
from chatsync.core.identity import IdentityProvider
from chatsync.core.minio import BlobStorage, MinioBlobStorage
from chatsync.core.store import DocumentStore, create_store
from chatsync.repositories.chat import ChatRepository
from chatsync.repositories.friendship import FriendshipRepository
from chatsync.repositories.notification import NotificationRepository
from chatsync.repositories.user import UserRepository
from chatsync.services.chat import ChatService
from chatsync.services.conversation import ConversationAggregator
from chatsync.services.friendship import FriendshipService
from chatsync.services.notification import NotificationCenter
from chatsync.services.profile import ProfileService
from chatsync.services.read_state import ConversationSession, ReadStateReconciler
from chatsync.services.relationship import RelationshipResolver
from chatsync.services.user_cache import UserCache

logger = logging.getLogger(__name__)


class ChatSyncClient:
    """Wires every component to one store, identity and event bus.

    Live subscriptions follow the identity: they restart when the signed in
    user changes and are torn down on sign out.
    """

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        identity: Optional[IdentityProvider] = None,
        storage: Optional[BlobStorage] = None,
        events: Optional[EventBus] = None,
        settings: Optional[Settings] = None
    ):
        self.settings = settings or default_settings
        self.store = store or create_store(self.settings)
        self.identity = identity or IdentityProvider()
        self.storage = storage or MinioBlobStorage.from_settings(self.settings)
        self.events = events or EventBus()

        self.user_repo = UserRepository(self.store)
        self.notification_repo = NotificationRepository(self.store)
        self.friendship_repo = FriendshipRepository(self.store, self.notification_repo)
        self.chat_repo = ChatRepository(self.store)

        self.user_cache = UserCache(self.user_repo)
        self.relationships = RelationshipResolver(self.friendship_repo, self.user_cache, self.events)
        self.friends = FriendshipService(self.friendship_repo, self.relationships, self.user_cache, self.events)
        self.conversations = ConversationAggregator(
            self.chat_repo,
            self.user_cache,
            self.events,
            debounce_seconds=self.settings.SEARCH_DEBOUNCE_SECONDS
        )
        self.read_state = ReadStateReconciler(self.chat_repo, self.events)
        self.chat = ChatService(self.chat_repo, self.friendship_repo, self.identity, self.events)
        self.notifications = NotificationCenter(self.notification_repo, self.events)
        self.profile = ProfileService(self.user_repo, self.storage, self.identity, self.events)

        self._identity_listener = None
        self.started = False

    @property
    def current_user_id(self) -> Optional[str]:
        return self.identity.current_user_id

    def start(self):
        """Begin following the identity. Must run inside the event loop."""
        if self.started:
            return
        self.started = True
        self._identity_listener = self.identity.listen(self._on_identity_changed)
        self._on_identity_changed(self.identity.current_user_id)

    async def sign_in(self, user_id: str):
        self.identity.sign_in(user_id)
        await self.profile.set_presence(True)

    async def sign_in_with_token(self, token: str) -> str:
        user_id = self.identity.sign_in_with_token(token)
        await self.profile.set_presence(True)
        return user_id

    async def sign_out(self):
        await self.read_state.pause_all()
        await self.profile.set_presence(False)
        self.identity.sign_out()

    def open_conversation(self, conversation_id: str) -> Optional[ConversationSession]:
        return self.read_state.open_session(conversation_id)

    async def on_app_paused(self):
        """App went to the background: leave active sessions and go offline"""
        await self.read_state.pause_all()
        await self.profile.set_presence(False)

    async def on_app_resumed(self):
        await self.profile.set_presence(True)
        await self.read_state.resume_all()

    async def close(self):
        if self._identity_listener is not None:
            self._identity_listener.cancel()
            self._identity_listener = None
        self._stop_components()
        self.conversations.close()
        self.started = False
        await self.store.close()
        logger.info("Client closed")

    def _on_identity_changed(self, user_id: Optional[str]):
        self._stop_components()
        if user_id is None:
            logger.info("Signed out, live queries stopped")
            return
        self.user_cache.start()
        self.relationships.start(user_id)
        self.conversations.start(user_id)
        self.read_state.start(user_id)
        self.notifications.start(user_id)
        logger.info(f"Live queries started for {user_id}")

    def _stop_components(self):
        self.notifications.stop()
        self.read_state.stop()
        self.conversations.stop()
        self.relationships.stop()
        self.user_cache.stop()
