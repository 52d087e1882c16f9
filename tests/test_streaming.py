import asyncio
import gc

import pytest

from rimind.core.errors import AssistantTimeout, AssistantUnavailable, ConversationNotFound
from rimind.services.streaming import ConversationLocks, StreamingResponseOrchestrator


class GatedAssistant:
    """Yields one chunk, then waits for the test to release the rest."""

    def __init__(self):
        self.gates = []
        self.closed = 0

    async def stream_reply(self, history, message):
        gate = asyncio.Event()
        self.gates.append(gate)
        try:
            yield f"re:{message}"
            await gate.wait()
            yield "."
        finally:
            self.closed += 1


class SilentAssistant:
    async def stream_reply(self, history, message):
        await asyncio.sleep(10)
        yield "never"


class EmptyAssistant:
    async def stream_reply(self, history, message):
        return
        yield


async def drain(chunks) -> str:
    return "".join([chunk async for chunk in chunks])


@pytest.fixture
async def owner(container):
    user = await container.auth.get_or_create_user("OwnerWallet111")
    return user.id


@pytest.mark.anyio
async def test_exchanges_on_one_conversation_are_serialized(container, owner):
    assistant = GatedAssistant()
    orchestrator = StreamingResponseOrchestrator(container.conversations, assistant)
    conversation = await container.conversations.create(owner)

    first = await orchestrator.open(conversation.id, owner, "one")
    second_task = asyncio.create_task(orchestrator.open(conversation.id, owner, "two"))
    await asyncio.sleep(0.05)

    # Second exchange waits for the first one's reply to be saved
    assert not second_task.done()
    assert len(assistant.gates) == 1

    assistant.gates[0].set()
    assert await drain(first) == "re:one."

    second = await second_task
    assistant.gates[1].set()
    assert await drain(second) == "re:two."

    detail = await container.conversations.get(conversation.id, owner)
    assert [(m.content, m.message_type.value) for m in detail.messages] == [
        ("one", "user"),
        ("re:one.", "ai"),
        ("two", "user"),
        ("re:two.", "ai"),
    ]
    assert conversation.id not in orchestrator.locks


@pytest.mark.anyio
async def test_client_disconnect_saves_nothing_and_closes_stream(container, owner):
    assistant = GatedAssistant()
    orchestrator = StreamingResponseOrchestrator(container.conversations, assistant)
    conversation = await container.conversations.create(owner)

    chunks = await orchestrator.open(conversation.id, owner, "one")
    assert await anext(chunks) == "re:one"
    await chunks.aclose()

    detail = await container.conversations.get(conversation.id, owner)
    assert [m.message_type.value for m in detail.messages] == ["user"]
    assert assistant.closed == 1
    assert conversation.id not in orchestrator.locks


@pytest.mark.anyio
async def test_unread_reply_releases_lock_when_closed(container, owner):
    assistant = GatedAssistant()
    orchestrator = StreamingResponseOrchestrator(container.conversations, assistant)
    conversation = await container.conversations.create(owner)

    chunks = await orchestrator.open(conversation.id, owner, "one")
    await chunks.aclose()

    second = await asyncio.wait_for(orchestrator.open(conversation.id, owner, "two"), 1.0)
    assistant.gates[1].set()
    assert await drain(second) == "re:two."

    detail = await container.conversations.get(conversation.id, owner)
    assert [(m.content, m.message_type.value) for m in detail.messages] == [
        ("one", "user"),
        ("two", "user"),
        ("re:two.", "ai"),
    ]
    assert assistant.closed == 2


@pytest.mark.anyio
async def test_dropped_reply_releases_lock(container, owner):
    assistant = GatedAssistant()
    orchestrator = StreamingResponseOrchestrator(container.conversations, assistant)
    conversation = await container.conversations.create(owner)

    chunks = await orchestrator.open(conversation.id, owner, "one")
    del chunks
    gc.collect()

    second = await asyncio.wait_for(orchestrator.open(conversation.id, owner, "two"), 1.0)
    assert assistant.closed == 1
    await second.aclose()
    assert conversation.id not in orchestrator.locks


@pytest.mark.anyio
async def test_empty_reply_saves_nothing(container, owner):
    orchestrator = StreamingResponseOrchestrator(container.conversations, EmptyAssistant())
    conversation = await container.conversations.create(owner)

    chunks = await orchestrator.open(conversation.id, owner, "one")

    assert await drain(chunks) == ""
    detail = await container.conversations.get(conversation.id, owner)
    assert [m.message_type.value for m in detail.messages] == ["user"]
    assert conversation.id not in orchestrator.locks


@pytest.mark.anyio
async def test_timeout_before_first_chunk_raises(container, owner):
    orchestrator = StreamingResponseOrchestrator(
        container.conversations, SilentAssistant(), chunk_timeout=0.05
    )
    conversation = await container.conversations.create(owner)

    with pytest.raises(AssistantTimeout):
        await orchestrator.open(conversation.id, owner, "one")

    assert conversation.id not in orchestrator.locks


@pytest.mark.anyio
async def test_unknown_conversation_releases_lock(container, owner):
    orchestrator = StreamingResponseOrchestrator(container.conversations, GatedAssistant())

    with pytest.raises(ConversationNotFound):
        await orchestrator.open(12345, owner, "one")

    assert 12345 not in orchestrator.locks


@pytest.mark.anyio
async def test_missing_assistant_writes_nothing(container, owner):
    orchestrator = StreamingResponseOrchestrator(container.conversations, None)
    conversation = await container.conversations.create(owner)

    with pytest.raises(AssistantUnavailable):
        await orchestrator.open(conversation.id, owner, "one")

    detail = await container.conversations.get(conversation.id, owner)
    assert detail.messages == []


@pytest.mark.anyio
async def test_locks_are_dropped_when_idle():
    locks = ConversationLocks()

    await locks.acquire(1)
    waiter = asyncio.create_task(locks.acquire(1))
    await asyncio.sleep(0)
    locks.release(1)
    await waiter
    assert 1 in locks
    locks.release(1)

    assert 1 not in locks
