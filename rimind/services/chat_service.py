"""Conversation service layer for the assistant chat.

Handles:
- Conversation creation and listing (per owner)
- Conversation retrieval with ordered messages
- Message storage (user + ai)
"""
from dataclasses import dataclass
from datetime import datetime
import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from rimind.core.errors import ConversationNotFound, UserNotFound
from rimind.database import SessionFactory
from rimind.models.conversation import Conversation, Message, MessageType

logger = logging.getLogger(__name__)


@dataclass
class ConversationDetail:
    """Conversation with its messages in chronological order."""
    id: int
    created_at: datetime
    messages: list[Message]


class ConversationStore:
    """
    Service layer for conversation operations.

    Every method opens its own database session. Ownership is part of
    existence: a conversation owned by another user is reported exactly
    like one that does not exist.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def create(self, user_id: int) -> Conversation:
        """
        Create a conversation owned by user_id.

        Raises:
            UserNotFound: If user_id does not reference an existing user
        """
        async with self._session_factory() as session:
            conversation = Conversation(user_id=user_id)
            session.add(conversation)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise UserNotFound() from e
            await session.refresh(conversation)

        logger.info(f"Conversation created: user={user_id}, conversation={conversation.id}")
        return conversation

    async def list(self, user_id: int) -> list[Conversation]:
        """All conversations owned by user_id, newest first."""
        async with self._session_factory() as session:
            statement = select(Conversation).where(
                Conversation.user_id == user_id
            ).order_by(Conversation.created_at.desc(), Conversation.id.desc())
            result = await session.exec(statement)
            return list(result.all())

    async def get(self, conversation_id: int, user_id: int) -> ConversationDetail:
        """
        Get a conversation with all messages.

        Args:
            conversation_id: Conversation ID
            user_id: Authenticated user ID (ownership filter)

        Returns:
            ConversationDetail with messages ordered oldest first

        Raises:
            ConversationNotFound: If no such conversation is owned by user_id
        """
        async with self._session_factory() as session:
            conversation = await self._get_owned(session, conversation_id, user_id)

            msg_statement = select(Message).where(
                Message.conversation_id == conversation_id
            ).order_by(Message.created_at, Message.id)
            messages = (await session.exec(msg_statement)).all()

        return ConversationDetail(
            id=conversation.id,
            created_at=conversation.created_at,
            messages=list(messages),
        )

    async def add_message(self, conversation_id: int, user_id: int, content: str) -> Message:
        """
        Store a user message after re-checking ownership.

        The ownership read and the insert share one session, so the row is
        only written for a conversation the caller owns at write time.

        Raises:
            ConversationNotFound: If no such conversation is owned by user_id
        """
        async with self._session_factory() as session:
            await self._get_owned(session, conversation_id, user_id)
            message = await self._store_message(session, conversation_id, MessageType.USER, content)

        logger.debug(f"User message stored: conversation={conversation_id}, message={message.id}")
        return message

    async def save_assistant_message(self, conversation_id: int, content: str) -> Message:
        """
        Store an assistant reply.

        Ownership is not re-checked; the caller validated it earlier in
        the same request.
        """
        async with self._session_factory() as session:
            message = await self._store_message(session, conversation_id, MessageType.AI, content)

        logger.debug(f"Assistant message stored: conversation={conversation_id}, message={message.id}")
        return message

    async def _get_owned(
        self,
        session: AsyncSession,
        conversation_id: int,
        user_id: int,
    ) -> Conversation:
        statement = select(Conversation).where(
            Conversation.id == conversation_id,
            Conversation.user_id == user_id,
        )
        conversation = (await session.exec(statement)).first()

        if not conversation:
            raise ConversationNotFound()

        return conversation

    async def _store_message(
        self,
        session: AsyncSession,
        conversation_id: int,
        message_type: MessageType,
        content: str,
    ) -> Message:
        message = Message(
            conversation_id=conversation_id,
            message_type=message_type,
            content=content,
        )
        session.add(message)
        await session.commit()
        await session.refresh(message)
        return message
