import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from chatsync.core.config import settings
from chatsync.core.events import ConversationReadReset, EventBus
from chatsync.core.store import Snapshot, Subscription
from chatsync.repositories.chat import ChatRepository
from chatsync.schemas.chat import Conversation, ConversationFilter
from chatsync.schemas.user import User
from chatsync.services.user_cache import UserCache
from chatsync.utils.debounce import Debouncer
from chatsync.utils.time import as_utc, to_millis, utcnow

logger = logging.getLogger(__name__)

ConversationsListener = Callable[[List[Conversation]], None]


class ConversationAggregator:
    """Live list of the current user's conversations with filtering and search.

    Filter and search compose: the active filter narrows the search results
    when a search is active, otherwise the full list.
    """

    def __init__(
        self,
        repo: ChatRepository,
        user_cache: UserCache,
        events: EventBus,
        now: Callable[[], datetime] = utcnow,
        debounce_seconds: Optional[float] = None
    ):
        self.repo = repo
        self.user_cache = user_cache
        self.events = events
        self.now = now
        self.current_user_id: Optional[str] = None

        self.filter = ConversationFilter.ALL
        self.search_query = ""
        self._conversations: List[Conversation] = []
        self._search_results: Optional[List[Conversation]] = None

        delay = settings.SEARCH_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self._debouncer = Debouncer(delay, self.search_now)
        self._listeners: List[ConversationsListener] = []
        self._subscription: Optional[Subscription] = None
        self._unsubscribe_reset = events.subscribe(ConversationReadReset, self._on_read_reset)
        self._remove_user_listener = None

    @property
    def conversations(self) -> List[Conversation]:
        return list(self._conversations)

    @property
    def is_searching(self) -> bool:
        return self._search_results is not None

    def get(self, conversation_id: str) -> Optional[Conversation]:
        for conversation in self._conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    def add_listener(self, listener: ConversationsListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def start(self, user_id: str):
        self.stop()
        self.current_user_id = user_id
        self._remove_user_listener = self.user_cache.add_listener(self._on_users_changed)
        self._subscription = self.repo.watch_user_conversations(user_id, self._on_snapshot)
        logger.info(f"Conversation aggregator started for {user_id}")

    def stop(self):
        self._debouncer.cancel()
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self._remove_user_listener is not None:
            self._remove_user_listener()
            self._remove_user_listener = None
        self.current_user_id = None
        self._conversations = []
        self._search_results = None
        self.search_query = ""
        self.filter = ConversationFilter.ALL

    def close(self):
        self.stop()
        self._unsubscribe_reset.cancel()
        self._listeners.clear()

    # Filtering and search
    def apply_filter(self, kind: ConversationFilter):
        self.filter = ConversationFilter(kind)
        self._notify()

    def search(self, query: str):
        """Debounced search; an empty query clears search mode at once"""
        self.search_query = query
        if not query.strip():
            self.clear_search()
            return
        self._debouncer.call(query)

    def search_now(self, query: str):
        self.search_query = query
        needle = query.strip().lower()
        if not needle:
            self.clear_search()
            return
        self._search_results = self._rank(needle)
        self._notify()

    def clear_search(self):
        self._debouncer.cancel()
        self.search_query = ""
        self._search_results = None
        self._notify()

    def visible(self) -> List[Conversation]:
        if self.current_user_id is None:
            return []
        base = self._search_results if self._search_results is not None else self._conversations
        return self._filtered(base, self.filter)

    # Counts
    def total_unread_count(self) -> int:
        if self.current_user_id is None:
            return 0
        return sum(c.unread_for(self.current_user_id) for c in self._conversations)

    def filter_counts(self) -> Dict[ConversationFilter, int]:
        if self.current_user_id is None:
            return {kind: 0 for kind in ConversationFilter}
        return {kind: len(self._filtered(self._conversations, kind)) for kind in ConversationFilter}

    def recent_conversations(self, limit: int = 5) -> List[Conversation]:
        """Conversations ordered by latest message, newest first"""
        ordered = sorted(self._conversations, key=lambda c: -self._time_key(c))
        return ordered[:limit]

    def search_suggestions(self, limit: int = 5) -> List[str]:
        """Display names of the people in the most recent conversations"""
        suggestions = []
        for conversation in self.recent_conversations(limit):
            user = self.other_user(conversation)
            if user is not None:
                suggestions.append(user.display_name)
        return suggestions

    def other_user(self, conversation: Conversation) -> Optional[User]:
        if self.current_user_id is None:
            return None
        other_id = conversation.other_participant(self.current_user_id)
        return self.user_cache.get(other_id) if other_id else None

    # Internals
    def _filtered(self, conversations: List[Conversation], kind: ConversationFilter) -> List[Conversation]:
        me = self.current_user_id
        if kind == ConversationFilter.UNREAD:
            return [c for c in conversations if c.unread_for(me) > 0]
        if kind == ConversationFilter.RECENT:
            return self._within(conversations, timedelta(days=settings.RECENT_WINDOW_DAYS))
        if kind == ConversationFilter.ACTIVE:
            return self._within(conversations, timedelta(days=settings.ACTIVE_WINDOW_DAYS))
        return list(conversations)

    def _within(self, conversations: List[Conversation], window: timedelta) -> List[Conversation]:
        cutoff = as_utc(self.now()) - window
        return [
            c for c in conversations
            if c.last_message_time is not None and as_utc(c.last_message_time) > cutoff
        ]

    def _rank(self, needle: str) -> List[Conversation]:
        matches = []
        for conversation in self._conversations:
            user = self.other_user(conversation)
            name = user.display_name.lower() if user else ""
            email = user.email.lower() if user else ""
            last_message = (conversation.last_message or "").lower()
            if needle in name or needle in email or needle in last_message:
                prefix = 0 if name.startswith(needle) else 1
                matches.append(((prefix, -self._time_key(conversation)), conversation))
        # sorted() is stable, so equal keys keep their list order
        return [conversation for _, conversation in sorted(matches, key=lambda m: m[0])]

    def _time_key(self, conversation: Conversation) -> int:
        if conversation.last_message_time is None:
            return 0
        return to_millis(conversation.last_message_time)

    def _on_snapshot(self, records: Snapshot):
        me = self.current_user_id
        if me is None:
            return
        conversations = [Conversation.model_validate(record) for record in records]
        self._conversations = [c for c in conversations if not c.is_deleted_by(me)]
        self._refresh_search()

    def _on_users_changed(self, users):
        self._refresh_search()

    def _on_read_reset(self, event: ConversationReadReset):
        if event.user_id != self.current_user_id:
            return
        self._conversations = [
            c.with_unread_reset(event.user_id) if c.id == event.conversation_id else c
            for c in self._conversations
        ]
        self._refresh_search()

    def _refresh_search(self):
        if self._search_results is not None and self.search_query.strip():
            self._search_results = self._rank(self.search_query.strip().lower())
        self._notify()

    def _notify(self):
        visible = self.visible()
        for listener in list(self._listeners):
            try:
                listener(visible)
            except Exception as e:
                logger.error(f"Conversation listener failed: {e}")
