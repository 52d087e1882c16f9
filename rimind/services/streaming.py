"""Relay an assistant's streamed reply to the client and persist it once.

Lifecycle of one exchange:

    open()  -> user message stored, history re-read, first chunk awaited
    relay   -> chunks yielded and accumulated
    end     -> trimmed text saved as one "ai" message

Anything that fails inside open() surfaces as an ordinary error response.
Once the first chunk has been handed to the client the status line is
already sent, so later failures are logged and the stream just ends.
Nothing is saved for a stream that did not complete.
"""
import asyncio
from typing import AsyncGenerator, AsyncIterator, Optional
import logging

from rimind.core.errors import AssistantTimeout, AssistantUnavailable
from rimind.services.assistant import Assistant, build_history
from rimind.services.chat_service import ConversationStore

logger = logging.getLogger(__name__)


class ConversationLocks:
    """
    One asyncio.Lock per conversation id.

    Entries are reference counted and dropped once nobody holds or waits
    on them.
    """

    def __init__(self):
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}

    async def acquire(self, conversation_id: int) -> None:
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        self._users[conversation_id] = self._users.get(conversation_id, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._forget(conversation_id)
            raise

    def release(self, conversation_id: int) -> None:
        self._locks[conversation_id].release()
        self._forget(conversation_id)

    def _forget(self, conversation_id: int) -> None:
        self._users[conversation_id] -= 1
        if self._users[conversation_id] == 0:
            del self._users[conversation_id]
            del self._locks[conversation_id]

    def __contains__(self, conversation_id: int) -> bool:
        return conversation_id in self._locks


class ReplyStream:
    """
    Reply chunks for the HTTP response body.

    Wraps a relay that open() has already started, so closing this
    object, or simply dropping it, runs the relay's cleanup.
    """

    def __init__(self, first: Optional[str], relay: AsyncGenerator[str, None]):
        self._pending = first
        self._relay = relay

    def __aiter__(self) -> "ReplyStream":
        return self

    async def __anext__(self) -> str:
        if self._pending is not None:
            chunk, self._pending = self._pending, None
            return chunk
        return await anext(self._relay)

    async def aclose(self) -> None:
        self._pending = None
        await self._relay.aclose()


class StreamingResponseOrchestrator:
    """
    Runs one user-message/assistant-reply exchange per call to open().

    Exchanges on the same conversation are serialized: the conversation's
    lock is held from the user-message insert until the reply is saved or
    the stream ends.
    """

    def __init__(
        self,
        conversations: ConversationStore,
        assistant: Optional[Assistant],
        chunk_timeout: float = 30.0,
    ):
        self.conversations = conversations
        self.assistant = assistant
        self.chunk_timeout = chunk_timeout
        self.locks = ConversationLocks()

    async def open(self, conversation_id: int, user_id: int, content: str) -> ReplyStream:
        """
        Store the user message and start the assistant reply.

        Args:
            conversation_id: Conversation ID
            user_id: Authenticated user ID (ownership filter)
            content: User message content

        Returns:
            ReplyStream of reply chunks, primed with the first chunk

        Raises:
            AssistantUnavailable: If no assistant is configured
            ConversationNotFound: If no such conversation is owned by user_id
            AssistantError: If the model fails before producing any text
        """
        if self.assistant is None:
            raise AssistantUnavailable()

        await self.locks.acquire(conversation_id)
        try:
            user_msg = await self.conversations.add_message(conversation_id, user_id, content)

            # Re-read so the history reflects everything stored so far
            conversation = await self.conversations.get(conversation_id, user_id)
            history = build_history(conversation.messages, exclude_id=user_msg.id)
            stream = self.assistant.stream_reply(history, content)
        except BaseException:
            self.locks.release(conversation_id)
            raise

        # From here on the relay owns the lock and the model stream
        relay = self._relay(conversation_id, stream)
        try:
            first = await anext(relay)
        except StopAsyncIteration:
            first = None

        return ReplyStream(first, relay)

    async def _relay(
        self,
        conversation_id: int,
        stream: AsyncIterator[str],
    ) -> AsyncGenerator[str, None]:
        parts: list[str] = []
        try:
            # Failures before the first chunk propagate to open()
            chunk = await self._next_chunk(stream)
            try:
                while chunk is not None:
                    parts.append(chunk)
                    yield chunk
                    chunk = await self._next_chunk(stream)
            except Exception:
                logger.exception(
                    f"Assistant stream failed after start: conversation={conversation_id}, "
                    f"chars_sent={sum(len(p) for p in parts)}"
                )
                return

            text = "".join(parts).strip()
            if not text:
                logger.warning(f"Assistant produced an empty reply: conversation={conversation_id}")
                return

            try:
                message = await self.conversations.save_assistant_message(conversation_id, text)
            except Exception:
                logger.exception(f"Failed to save assistant reply: conversation={conversation_id}")
                return

            logger.info(f"Exchange completed: conversation={conversation_id}, response_id={message.id}")
        finally:
            self.locks.release(conversation_id)
            await self._close(stream)

    async def _next_chunk(self, stream: AsyncIterator[str]) -> Optional[str]:
        """Next chunk, or None when the stream is exhausted."""
        try:
            async with asyncio.timeout(self.chunk_timeout):
                return await anext(stream)
        except StopAsyncIteration:
            return None
        except TimeoutError as e:
            raise AssistantTimeout() from e

    @staticmethod
    async def _close(stream: AsyncIterator[str]) -> None:
        aclose = getattr(stream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception:
            logger.exception("Error closing assistant stream")
