import logging
import uuid
from typing import List, Optional

from chatsync.core.config import settings
from chatsync.core.store import DocumentStore, Increment, Query, SnapshotCallback, Subscription
from chatsync.schemas.chat import Conversation, Message, MessageType
from chatsync.schemas.friendship import pair_id
from chatsync.utils.time import utcnow

logger = logging.getLogger(__name__)

CHATS = "chats"
MESSAGES = "messages"


class ChatRepository:

    def __init__(self, store: DocumentStore):
        self.store = store

    # Conversation operations
    async def create_or_get_conversation(self, user_a: str, user_b: str) -> Conversation:
        """Get the conversation for a pair, creating it when missing.

        A conversation a participant had deleted is restored for them.
        """
        conversation_id = pair_id(user_a, user_b)
        record = await self.store.get_once(CHATS, conversation_id)

        if record is None:
            now = utcnow()
            conversation = Conversation(
                id=conversation_id,
                participants=sorted([user_a, user_b]),
                unread_count={user_a: 0, user_b: 0},
                deleted_by={user_a: False, user_b: False},
                deleted_at={user_a: None, user_b: None},
                last_seen_by={user_a: now, user_b: now},
                created_at=now,
                updated_at=now
            )
            await self.store.set(CHATS, conversation_id, conversation.model_dump())
            logger.info(f"Created conversation {conversation_id}")
            return conversation

        conversation = Conversation.model_validate(record)
        for participant in conversation.participants:
            if conversation.is_deleted_by(participant):
                await self.restore_for_user(conversation_id, participant)
                conversation.deleted_by[participant] = False
        return conversation

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        record = await self.store.get_once(CHATS, conversation_id)
        if record is None:
            return None
        return Conversation.model_validate(record)

    def watch_user_conversations(self, user_id: str, callback: SnapshotCallback) -> Subscription:
        query = (
            Query()
            .where("participants", "array_contains", user_id)
            .order_by("updated_at", descending=True)
        )
        return self.store.watch(CHATS, query, callback)

    async def update_last_message(self, conversation_id: str, message: Message) -> None:
        """Denormalise the latest message onto the conversation"""
        await self.store.update(CHATS, conversation_id, {
            "last_message": message.content,
            "last_message_time": message.timestamp,
            "last_message_sender_id": message.sender_id,
            "updated_at": utcnow(),
        })

    async def update_last_seen(self, conversation_id: str, user_id: str) -> None:
        await self.store.update(CHATS, conversation_id, {f"last_seen_by.{user_id}": utcnow()})

    async def increment_unread_count(self, conversation_id: str, user_id: str, amount: int = 1) -> None:
        await self.store.update(CHATS, conversation_id, {f"unread_count.{user_id}": Increment(amount)})

    async def reset_unread_count(self, conversation_id: str, user_id: str) -> None:
        """Set the user's counter to zero; never decremented"""
        await self.store.update(CHATS, conversation_id, {
            f"unread_count.{user_id}": 0,
            f"last_seen_by.{user_id}": utcnow(),
        })

    async def delete_for_user(self, conversation_id: str, user_id: str) -> None:
        """Hide the conversation for one participant"""
        await self.store.update(CHATS, conversation_id, {
            f"deleted_by.{user_id}": True,
            f"deleted_at.{user_id}": utcnow(),
        })

    async def restore_for_user(self, conversation_id: str, user_id: str) -> None:
        # deleted_at is kept so older messages stay hidden
        await self.store.update(CHATS, conversation_id, {f"deleted_by.{user_id}": False})

    # Message operations
    async def create_message(
        self,
        sender_id: str,
        receiver_id: str,
        content: str,
        message_type: MessageType = MessageType.TEXT
    ) -> Message:
        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=pair_id(sender_id, receiver_id),
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            message_type=message_type
        )
        await self.store.create(MESSAGES, message.model_dump())
        return message

    async def get_message(self, message_id: str) -> Optional[Message]:
        record = await self.store.get_once(MESSAGES, message_id)
        if record is None:
            return None
        return Message.model_validate(record)

    def watch_messages(self, conversation_id: str, callback: SnapshotCallback) -> Subscription:
        query = Query().where("conversation_id", "==", conversation_id).order_by("timestamp")
        return self.store.watch(MESSAGES, query, callback)

    async def get_unread_messages(self, conversation_id: str, user_id: str) -> List[Message]:
        query = (
            Query()
            .where("conversation_id", "==", conversation_id)
            .where("receiver_id", "==", user_id)
            .where("is_read", "==", False)
        )
        return [Message.model_validate(record) for record in await self.store.query(MESSAGES, query)]

    async def mark_message_as_read(self, message_id: str) -> None:
        await self.store.update(MESSAGES, message_id, {"is_read": True})

    async def edit_message(self, message_id: str, content: str) -> None:
        await self.store.update(MESSAGES, message_id, {
            "content": content,
            "is_edited": True,
            "edited_at": utcnow(),
        })

    async def soft_delete_message(self, message_id: str) -> None:
        """Redact the message but keep the record for ordering"""
        await self.store.update(MESSAGES, message_id, {
            "is_deleted": True,
            "deleted_at": utcnow(),
            "content": settings.DELETED_MESSAGE_PLACEHOLDER,
        })
