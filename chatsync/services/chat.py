import logging

from chatsync.core.events import EventBus
from chatsync.core.identity import IdentityProvider
from chatsync.repositories.chat import ChatRepository
from chatsync.repositories.friendship import FriendshipRepository
from chatsync.schemas.chat import Conversation, Message, MessageType
from chatsync.schemas.result import OperationResult, SyncErrorKind
from chatsync.utils.exceptions import NotFoundError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)


class ChatService:

    def __init__(
        self,
        repo: ChatRepository,
        friendship_repo: FriendshipRepository,
        identity: IdentityProvider,
        events: EventBus
    ):
        self.repo = repo
        self.friendship_repo = friendship_repo
        self.identity = identity
        self.events = events

    def _unauthenticated(self, operation: str) -> OperationResult:
        return OperationResult.failure(SyncErrorKind.NOT_AUTHENTICATED, "No signed in user", operation)

    async def _ensure_can_chat(self, user_id: str, other_user_id: str):
        if user_id == other_user_id:
            raise ValidationError("Cannot chat with yourself")
        friendship = await self.friendship_repo.get_friendship(user_id, other_user_id)
        if friendship is None:
            raise PermissionDeniedError(f"You are not friends with {other_user_id}")
        if friendship.is_blocked:
            raise PermissionDeniedError(f"Chat with {other_user_id} is blocked")

    async def open_chat(self, other_user_id: str) -> OperationResult:
        """Get or create the conversation with a friend"""
        me = self.identity.current_user_id
        if me is None:
            return self._unauthenticated("open_chat")

        async def call() -> Conversation:
            await self._ensure_can_chat(me, other_user_id)
            return await self.repo.create_or_get_conversation(me, other_user_id)

        return await self.events.guard("open_chat", call)

    async def send_message(
        self,
        receiver_id: str,
        content: str,
        message_type: MessageType = MessageType.TEXT
    ) -> OperationResult:
        """Send a message and update the conversation it belongs to.

        The receiver's unread counter goes up by one and the sender's last
        seen stamp moves to now.
        """
        me = self.identity.current_user_id
        if me is None:
            return self._unauthenticated("send_message")

        async def call() -> Message:
            text = content.strip()
            if not text:
                raise ValidationError("Message content cannot be empty")
            await self._ensure_can_chat(me, receiver_id)

            message = await self.repo.create_message(me, receiver_id, text, message_type)
            conversation = await self.repo.create_or_get_conversation(me, receiver_id)
            await self.repo.update_last_message(conversation.id, message)
            await self.repo.update_last_seen(conversation.id, me)
            await self.repo.increment_unread_count(conversation.id, receiver_id)
            return message

        return await self.events.guard("send_message", call)

    async def _own_message(self, message_id: str, user_id: str) -> Message:
        message = await self.repo.get_message(message_id)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")
        if message.sender_id != user_id:
            raise PermissionDeniedError("Only the sender can change a message")
        return message

    async def edit_message(self, message_id: str, content: str) -> OperationResult:
        me = self.identity.current_user_id
        if me is None:
            return self._unauthenticated("edit_message")

        async def call():
            text = content.strip()
            if not text:
                raise ValidationError("Message content cannot be empty")
            message = await self._own_message(message_id, me)
            if message.is_deleted:
                raise ValidationError("A deleted message cannot be edited")
            await self.repo.edit_message(message_id, text)

        return await self.events.guard("edit_message", call)

    async def delete_message(self, message_id: str) -> OperationResult:
        """Soft delete one of the user's own messages"""
        me = self.identity.current_user_id
        if me is None:
            return self._unauthenticated("delete_message")

        async def call():
            await self._own_message(message_id, me)
            await self.repo.soft_delete_message(message_id)

        return await self.events.guard("delete_message", call)

    async def delete_chat(self, conversation_id: str) -> OperationResult:
        """Hide a conversation for the current user only"""
        me = self.identity.current_user_id
        if me is None:
            return self._unauthenticated("delete_chat")
        return await self.events.guard("delete_chat", lambda: self.repo.delete_for_user(conversation_id, me))
