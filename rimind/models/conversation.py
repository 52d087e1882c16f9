"""Conversation and Message SQLModel definitions for the assistant chat.

Models:
- Conversation: Chat conversation entity with user ownership
- Message: Individual message in a conversation
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from rimind.utilities.clock import utcnow


class MessageType(str, Enum):
    """Closed set of message authors."""
    USER = "user"
    AI = "ai"


class Conversation(SQLModel, table=True):
    """
    Conversation entity for the assistant chat.

    Ownership: Each conversation belongs to exactly one user via user_id.
    All reads and writes MUST filter by user_id.
    """
    __tablename__ = "conversation"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True, nullable=False)
    created_at: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime(timezone=True))


class Message(SQLModel, table=True):
    """
    Message entity for conversations.

    message_type: "user" or "ai". Immutable once stored; read back ordered
    by (created_at, id) so the id settles timestamp ties.
    """
    __tablename__ = "message"

    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: int = Field(foreign_key="conversation.id", index=True, nullable=False)
    content: str = Field()
    message_type: MessageType = Field(default=MessageType.USER)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
