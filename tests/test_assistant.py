from types import SimpleNamespace
from typing import Optional

import httpx
import pytest
from openai import APIError, APITimeoutError

from rimind.core.errors import AssistantError
from rimind.models.conversation import Message, MessageType
from rimind.services.assistant import OpenAIAssistant, build_history

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def event(content: Optional[str] = None, empty: bool = False):
    if empty:
        return SimpleNamespace(choices=[])
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class FakeStream:
    """Chat completion stream: replays events, optionally failing after `fail_after`."""

    def __init__(self, events, fail_after: Optional[int] = None):
        self.events = list(events)
        self.fail_after = fail_after
        self.closed = False

    async def _iterate(self):
        for index, item in enumerate(self.events):
            if index == self.fail_after:
                raise APIError("stream broke", REQUEST, body=None)
            yield item

    def __aiter__(self):
        return self._iterate()

    async def close(self):
        self.closed = True


class FakeCompletions:
    def __init__(self, stream: FakeStream, error: Optional[Exception] = None):
        self.stream = stream
        self.error = error
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.stream


class FakeClient:
    """Just enough of AsyncOpenAI for chat.completions.create."""

    def __init__(self, stream: FakeStream, error: Optional[Exception] = None):
        self.completions = FakeCompletions(stream, error)
        self.chat = SimpleNamespace(completions=self.completions)


def make_assistant(client, system_prompt: Optional[str] = "Be brief.") -> OpenAIAssistant:
    return OpenAIAssistant(
        api_key="sk-test",
        model="gpt-test",
        timeout=5.0,
        system_prompt=system_prompt,
        client=client,
    )


async def collect(assistant, history, message) -> list[str]:
    return [chunk async for chunk in assistant.stream_reply(history, message)]


@pytest.mark.anyio
async def test_yields_only_non_empty_deltas():
    stream = FakeStream([event("Hel"), event(empty=True), event(None), event(""), event("lo")])
    assistant = make_assistant(FakeClient(stream))

    assert await collect(assistant, [], "hi") == ["Hel", "lo"]
    assert stream.closed


@pytest.mark.anyio
async def test_request_puts_system_prompt_first_and_new_message_last():
    client = FakeClient(FakeStream([event("ok")]))
    history = [{"role": "user", "content": "q1"}, {"role": "assistant", "content": "a1"}]

    await collect(make_assistant(client), history, "q2")

    request = client.completions.requests[0]
    assert request["model"] == "gpt-test"
    assert request["stream"] is True
    assert request["timeout"] == 5.0
    assert request["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "q1"},
        {"role": "assistant", "content": "a1"},
        {"role": "user", "content": "q2"},
    ]


@pytest.mark.anyio
async def test_blank_system_prompt_is_left_out():
    client = FakeClient(FakeStream([event("ok")]))

    await collect(make_assistant(client, system_prompt=""), [], "hi")

    assert client.completions.requests[0]["messages"] == [{"role": "user", "content": "hi"}]


@pytest.mark.parametrize("error", [
    APITimeoutError(request=REQUEST),
    APIError("server error", REQUEST, body=None),
])
@pytest.mark.anyio
async def test_open_failure_becomes_assistant_error(error):
    stream = FakeStream([event("never")])
    assistant = make_assistant(FakeClient(stream, error=error))

    with pytest.raises(AssistantError) as excinfo:
        await collect(assistant, [], "hi")

    assert excinfo.value.__cause__ is error
    assert not stream.closed


@pytest.mark.anyio
async def test_mid_stream_failure_becomes_assistant_error_and_closes():
    stream = FakeStream([event("a"), event("b"), event("c")], fail_after=2)
    replies = make_assistant(FakeClient(stream)).stream_reply([], "hi")

    assert await anext(replies) == "a"
    assert await anext(replies) == "b"
    with pytest.raises(AssistantError):
        await anext(replies)
    assert stream.closed


@pytest.mark.anyio
async def test_closing_early_closes_the_api_stream():
    stream = FakeStream([event("a"), event("b")])
    replies = make_assistant(FakeClient(stream)).stream_reply([], "hi")

    assert await anext(replies) == "a"
    await replies.aclose()

    assert stream.closed


def test_build_history_maps_roles_and_skips_excluded():
    messages = [
        Message(id=1, conversation_id=1, content="q1", message_type=MessageType.USER),
        Message(id=2, conversation_id=1, content="a1", message_type=MessageType.AI),
        Message(id=3, conversation_id=1, content="q2", message_type=MessageType.USER),
    ]

    assert build_history(messages, exclude_id=3) == [
        {"role": "user", "content": "q1"},
        {"role": "assistant", "content": "a1"},
    ]
