import logging
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set

from chatsync.core.events import ConversationReadReset, EventBus
from chatsync.core.store import Snapshot, Subscription
from chatsync.repositories.chat import ChatRepository
from chatsync.schemas.chat import Conversation, Message
from chatsync.schemas.result import OperationResult, SyncError, SyncErrorKind
from chatsync.utils.time import as_utc

logger = logging.getLogger(__name__)

MessagesListener = Callable[[List[Message]], None]


class SessionState(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"


class ReadStateReconciler:
    """Zeroes unread counters and flags messages read for the current user.

    The only component allowed to zero a conversation's unread counter. The local
    reset is published before the store write, and store failures are reported
    but never rolled back.
    """

    def __init__(self, repo: ChatRepository, events: EventBus):
        self.repo = repo
        self.events = events
        self.current_user_id: Optional[str] = None
        self.sessions: Dict[str, "ConversationSession"] = {}
        self._paused: Set[str] = set()

    def start(self, user_id: str):
        self.stop()
        self.current_user_id = user_id

    def stop(self):
        for session in list(self.sessions.values()):
            session.dispose()
        self.sessions = {}
        self._paused = set()
        self.current_user_id = None

    async def reset_unread(self, conversation_id: str) -> OperationResult:
        """Reset the current user's unread counter for a conversation to zero"""
        me = self.current_user_id
        if me is None:
            return OperationResult.failure(SyncErrorKind.NOT_AUTHENTICATED, "No signed in user", "reset_unread")

        await self.events.publish(ConversationReadReset(conversation_id=conversation_id, user_id=me))
        try:
            await self.repo.reset_unread_count(conversation_id, me)
        except Exception as e:
            error = SyncError.from_exception(e, "reset_unread")
            await self.events.report(error)
            return OperationResult(error=error)
        return OperationResult.success()

    async def mark_messages_read(self, messages: Iterable[Message]) -> int:
        """Flag the current user's unread messages as read; failures are skipped"""
        me = self.current_user_id
        if me is None:
            return 0

        marked = 0
        for message in messages:
            if not message.is_unread_for(me):
                continue
            try:
                await self.repo.mark_message_as_read(message.id)
                marked += 1
            except Exception as e:
                await self.events.report(SyncError.from_exception(e, "mark_message_as_read"))
        return marked

    async def mark_conversation_read(self, conversation_id: str) -> OperationResult:
        """Flag every unread message addressed to the user, then reset the counter"""
        me = self.current_user_id
        if me is None:
            return OperationResult.failure(SyncErrorKind.NOT_AUTHENTICATED, "No signed in user", "mark_conversation_read")
        try:
            unread = await self.repo.get_unread_messages(conversation_id, me)
        except Exception as e:
            await self.events.report(SyncError.from_exception(e, "mark_conversation_read"))
            unread = []
        await self.mark_messages_read(unread)
        return await self.reset_unread(conversation_id)

    def open_session(self, conversation_id: str) -> Optional["ConversationSession"]:
        """Open a view session on a conversation; it starts inactive.

        Returns None when nobody is signed in.
        """
        if self.current_user_id is None:
            logger.info(f"Not opening {conversation_id}: no signed in user")
            return None
        if conversation_id in self.sessions:
            return self.sessions[conversation_id]
        session = ConversationSession(self, conversation_id)
        self.sessions[conversation_id] = session
        session.start()
        return session

    async def pause_all(self):
        """Deactivate open sessions, remembering which were active"""
        for conversation_id, session in list(self.sessions.items()):
            if session.state == SessionState.ACTIVE:
                self._paused.add(conversation_id)
                await session.deactivate()

    async def resume_all(self):
        paused, self._paused = self._paused, set()
        for conversation_id in paused:
            session = self.sessions.get(conversation_id)
            if session is not None:
                await session.activate()

    def _forget(self, session: "ConversationSession"):
        if self.sessions.get(session.conversation_id) is session:
            del self.sessions[session.conversation_id]
        self._paused.discard(session.conversation_id)


class ConversationSession:
    """One conversation being viewed: inactive -> active -> inactive.

    Entering active zeroes the counter and flags unread messages; leaving it
    zeroes the counter once more. While active, incoming messages are flagged
    read as they arrive.
    """

    def __init__(self, reconciler: ReadStateReconciler, conversation_id: str):
        self.reconciler = reconciler
        self.conversation_id = conversation_id
        self.state = SessionState.INACTIVE
        self.conversation: Optional[Conversation] = None
        self.messages: List[Message] = []
        self._listeners: List[MessagesListener] = []
        self._subscription: Optional[Subscription] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.reconciler.current_user_id

    def add_listener(self, listener: MessagesListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def start(self):
        if self._subscription is None:
            self._subscription = self.reconciler.repo.watch_messages(self.conversation_id, self._on_messages)

    async def activate(self):
        if self.state == SessionState.ACTIVE or self.user_id is None:
            return
        self.state = SessionState.ACTIVE
        logger.debug(f"Conversation {self.conversation_id} active")
        await self.reconciler.reset_unread(self.conversation_id)
        await self.reconciler.mark_messages_read(self.messages)

    async def deactivate(self):
        if self.state == SessionState.INACTIVE:
            return
        self.state = SessionState.INACTIVE
        logger.debug(f"Conversation {self.conversation_id} inactive")
        await self.reconciler.reset_unread(self.conversation_id)

    async def close(self):
        await self.deactivate()
        self.dispose()

    def dispose(self):
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self._listeners.clear()
        self.state = SessionState.INACTIVE
        self.reconciler._forget(self)

    def is_last_message_seen(self) -> bool:
        """Whether the other participant has seen the user's last message"""
        me = self.user_id
        if self.conversation is None or me is None:
            return False
        other = self.conversation.other_participant(me)
        return other is not None and self.conversation.is_message_seen(me, other)

    async def _on_messages(self, records: Snapshot):
        me = self.user_id
        if me is None:
            return

        try:
            self.conversation = await self.reconciler.repo.get_conversation(self.conversation_id)
        except Exception as e:
            logger.warning(f"Could not load conversation {self.conversation_id}: {e}")

        hidden_before = None
        if self.conversation is not None:
            hidden_before = self.conversation.deleted_at.get(me)

        messages = []
        for record in records:
            message = Message.model_validate(record)
            if hidden_before is not None and as_utc(message.timestamp) < as_utc(hidden_before):
                continue
            messages.append(message)
        self.messages = messages

        for listener in list(self._listeners):
            try:
                listener(list(messages))
            except Exception as e:
                logger.error(f"Message listener failed: {e}")

        if self.state == SessionState.ACTIVE and any(m.is_unread_for(me) for m in messages):
            await self.reconciler.mark_messages_read(messages)
            await self.reconciler.reset_unread(self.conversation_id)
