"""OpenAI-backed assistant that streams its reply as text chunks."""
from typing import AsyncIterator, Dict, Optional, Protocol
import logging

from openai import APIError, APITimeoutError, AsyncOpenAI

from rimind.core.errors import AssistantError
from rimind.models.conversation import Message, MessageType

logger = logging.getLogger(__name__)

ChatTurn = Dict[str, str]


class Assistant(Protocol):
    """Anything that can stream a reply for a conversation history."""

    def stream_reply(self, history: list[ChatTurn], message: str) -> AsyncIterator[str]:
        ...


def build_history(messages: list[Message], exclude_id: Optional[int] = None) -> list[ChatTurn]:
    """
    Convert stored messages to chat turns.

    Args:
        messages: Messages in chronological order
        exclude_id: Message to leave out (the new user message, which is
            sent separately)

    Returns:
        List of turns: [{"role": "user"|"assistant", "content": "..."}]
    """
    history = []
    for msg in messages:
        if msg.id == exclude_id:
            continue
        role = "user" if msg.message_type == MessageType.USER else "assistant"
        history.append({"role": role, "content": msg.content})
    return history


class OpenAIAssistant:
    """Streams chat completions from the OpenAI API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: float = 30.0,
        system_prompt: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.timeout = timeout
        self.system_prompt = system_prompt
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout)

    def _build_messages(self, history: list[ChatTurn], message: str) -> list[ChatTurn]:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(history)
        messages.append({"role": "user", "content": message})
        return messages

    async def stream_reply(self, history: list[ChatTurn], message: str) -> AsyncIterator[str]:
        """
        Stream the assistant's reply to message given history.

        Yields:
            Non-empty text deltas in arrival order

        Raises:
            AssistantError: If the OpenAI API fails or times out
        """
        try:
            stream = await self._client.chat.completions.create(
                model=self.model,
                messages=self._build_messages(history, message),
                stream=True,
                timeout=self.timeout,
            )
        except (APIError, APITimeoutError) as e:
            logger.error(f"OpenAI API error opening stream: {str(e)}")
            raise AssistantError() from e

        try:
            async for event in stream:
                if not event.choices:
                    continue
                delta = event.choices[0].delta.content
                if delta:
                    yield delta
        except (APIError, APITimeoutError) as e:
            logger.error(f"OpenAI API error during stream: {str(e)}")
            raise AssistantError() from e
        finally:
            await stream.close()
