from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from noble.models.user import User


class MessageType(str, Enum):
    """Kinds of message content."""

    TEXT = "text"
    IMAGE = "image"
    GIF = "gif"
    AUDIO = "audio"
    ICEBREAKER = "icebreaker"


class Message(BaseModel):
    """Model representing a message in a conversation.

    Attributes:
        message_id: Unique identifier for the message
        conversation_id: Conversation the message belongs to
        sender_id: ID of the user sending the message
        content: Text content, or the media URL for non-text types
        message_type: Kind of content
        created_at: When the message was created
        is_read: Whether the recipient has read the message
    """

    model_config = ConfigDict(frozen=True)

    message_id: str
    conversation_id: str
    sender_id: str
    content: str = Field(min_length=1, max_length=2000)
    message_type: MessageType = MessageType.TEXT
    created_at: datetime
    is_read: bool = False


class Conversation(BaseModel):
    """Message thread created once a match exists.

    `unread_count` is a single counter shared by both participants.
    `other_user` is resolved when listing and never stored.
    """

    model_config = ConfigDict(frozen=True)

    conversation_id: str
    match_id: str
    participants: list[str]
    last_message: Message | None = None
    unread_count: int = Field(0, ge=0)
    created_at: datetime
    updated_at: datetime
    other_user: User | None = None

    def includes(self, user_id: str) -> bool:
        return user_id in self.participants
