import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from uuid import uuid4

from noble.errors import NotFound
from noble.models.message import Conversation, Message, MessageType
from noble.models.user import User
from noble.services.profile import ProfileDirectory
from noble.store.base import (
    Document,
    DocumentStore,
    ErrorCallback,
    Increment,
    Query,
    Subscription,
)
from noble.store.collections import CONVERSATIONS, MESSAGES

logger = logging.getLogger(__name__)

MessagesCallback = Callable[[list[Message]], Awaitable[None] | None]


class ConversationStore:
    """Service for conversations and their messages.

    Messages are append-only and ordered by creation time. The conversation
    caches its last message and a single unread counter.

    Attributes:
        store: Document store holding conversations and messages
        profiles: Directory used to resolve the other participant
    """

    def __init__(self, store: DocumentStore, profiles: ProfileDirectory) -> None:
        self.store = store
        self.profiles = profiles

    @staticmethod
    def _messages_query(conversation_id: str) -> Query:
        return (
            Query(collection=MESSAGES)
            .where("conversation_id", "==", conversation_id)
            .ordered("created_at")
        )

    async def get_conversation(self, conversation_id: str) -> Conversation:
        """Get a conversation by id.

        Raises:
            NotFound: If the conversation does not exist
        """
        document = await self.store.get(CONVERSATIONS, conversation_id)
        if document is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        return Conversation.model_validate(document)

    async def _participant_conversation(
        self, conversation_id: str, user_id: str
    ) -> Conversation:
        conversation = await self.get_conversation(conversation_id)
        if not conversation.includes(user_id):
            # Not revealed to outsiders.
            raise NotFound(f"Conversation {conversation_id} not found")
        return conversation

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        """Get a user's conversations, most recently updated first.

        Each conversation has `other_user` populated. If the other profile no
        longer exists it is left empty.
        """
        query = (
            Query(collection=CONVERSATIONS)
            .where("participants", "array_contains", user_id)
            .ordered("updated_at", descending=True)
        )
        conversations = [
            Conversation.model_validate(d) for d in await self.store.query(query)
        ]
        others = await asyncio.gather(
            *(self._other_user(c, user_id) for c in conversations)
        )
        return [
            c.model_copy(update={"other_user": other})
            for c, other in zip(conversations, others)
        ]

    async def _other_user(
        self, conversation: Conversation, user_id: str
    ) -> User | None:
        other_id = next((p for p in conversation.participants if p != user_id), None)
        if other_id is None:
            return None
        try:
            return await self.profiles.get_identity(other_id)
        except NotFound:
            logger.warning(
                "Conversation %s references missing user %s",
                conversation.conversation_id,
                other_id,
            )
            return None

    async def list_messages(self, conversation_id: str) -> list[Message]:
        """Get the messages of a conversation in chronological order."""
        documents = await self.store.query(self._messages_query(conversation_id))
        return [Message.model_validate(d) for d in documents]

    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        message_type: MessageType = MessageType.TEXT,
    ) -> Message:
        """Append a message and update the conversation summary.

        The message, the cached last message, the update time and the unread
        counter are written in one batch.

        Args:
            conversation_id: Conversation to post in
            sender_id: ID of the user sending the message
            content: Text, or the media URL for non-text types
            message_type: Kind of content

        Returns:
            The created message

        Raises:
            NotFound: If the conversation does not exist or the sender is not
                one of its participants
            ValueError: If the content is empty
        """
        await self._participant_conversation(conversation_id, sender_id)
        message = Message(
            message_id=str(uuid4()),
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            created_at=datetime.now(UTC),
        )
        batch = (
            self.store.batch()
            .create(MESSAGES, message.message_id, message.model_dump())
            .update(
                CONVERSATIONS,
                conversation_id,
                {
                    "last_message": message.model_dump(),
                    "updated_at": message.created_at,
                    "unread_count": Increment(),
                },
            )
        )
        await batch.commit()
        return message

    async def mark_read(self, conversation_id: str, viewer_id: str) -> int:
        """Mark the messages the viewer received as read. Idempotent.

        Resets the conversation's unread counter to 0.

        Returns:
            Number of messages that were marked

        Raises:
            NotFound: If the conversation does not exist or the viewer is not
                a participant
        """
        conversation = await self._participant_conversation(
            conversation_id, viewer_id
        )
        query = (
            Query(collection=MESSAGES)
            .where("conversation_id", "==", conversation_id)
            .where("is_read", "==", False)
            .where("sender_id", "!=", viewer_id)
        )
        unread = await self.store.query(query)

        batch = self.store.batch()
        for message in unread:
            batch.update(MESSAGES, message["message_id"], {"is_read": True})
        fields: Document = {"unread_count": 0}
        last = conversation.last_message
        if last is not None and last.sender_id != viewer_id and not last.is_read:
            fields["last_message"] = last.model_copy(update={"is_read": True})
        batch.update(CONVERSATIONS, conversation_id, fields)
        await batch.commit()
        return len(unread)

    async def subscribe(
        self,
        conversation_id: str,
        on_update: MessagesCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Listen to the messages of a conversation.

        `on_update` receives the full chronological message list right away
        and again after every change. Call `cancel()` on the returned handle
        to stop listening.

        Raises:
            NotFound: If the conversation does not exist
        """
        await self.get_conversation(conversation_id)

        async def deliver(documents: list[Document]) -> None:
            result = on_update([Message.model_validate(d) for d in documents])
            if inspect.isawaitable(result):
                await result

        subscription = self.store.watch(
            self._messages_query(conversation_id), deliver, on_error=on_error
        )
        logger.debug("Subscribed to conversation %s", conversation_id)
        return subscription
