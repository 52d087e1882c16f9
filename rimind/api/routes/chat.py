"""Conversation routes for the assistant chat.

Provides:
- GET /conversations - List the user's conversations
- POST /conversations - Create a conversation
- GET /conversation/{id} - Get conversation with messages
- GET /conversation/{id}/messages - Get messages only
- POST /conversation/{id}/messages - Send a message, stream the AI reply
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from rimind.core.deps import Container, get_container, get_current_user
from rimind.core.security import SessionUser
from rimind.models.conversation import MessageType


router = APIRouter(tags=["chat"], dependencies=[Depends(get_current_user)])


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class MessageCreate(BaseModel):
    """Request model for sending a message."""
    content: str


class MessageResponse(CamelModel):
    """Response model for a single message."""
    id: int
    content: str
    created_at: datetime
    message_type: MessageType


class ConversationSummary(CamelModel):
    """Response model for conversation list entries."""
    id: int
    created_at: datetime


class ConversationDetail(CamelModel):
    """Response model for conversation with messages."""
    id: int
    created_at: datetime
    messages: list[MessageResponse]


@router.get("/conversations", response_model=list[ConversationSummary])
async def list_conversations(
    current_user: SessionUser = Depends(get_current_user),
    container: Container = Depends(get_container),
) -> list[ConversationSummary]:
    """List all conversations for the authenticated user, newest first."""
    conversations = await container.conversations.list(current_user.id)
    return [ConversationSummary.model_validate(conv) for conv in conversations]


@router.post("/conversations", response_model=ConversationSummary)
async def create_conversation(
    current_user: SessionUser = Depends(get_current_user),
    container: Container = Depends(get_container),
) -> ConversationSummary:
    """Create an empty conversation owned by the authenticated user."""
    conversation = await container.conversations.create(current_user.id)
    return ConversationSummary.model_validate(conversation)


@router.get("/conversation/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    conversation_id: int,
    current_user: SessionUser = Depends(get_current_user),
    container: Container = Depends(get_container),
) -> ConversationDetail:
    """
    Get conversation with all messages.

    Raises:
        ConversationNotFound: 404 if conversation not found or not owned
    """
    conversation = await container.conversations.get(conversation_id, current_user.id)
    return ConversationDetail.model_validate(conversation)


@router.get("/conversation/{conversation_id}/messages", response_model=list[MessageResponse])
async def get_messages(
    conversation_id: int,
    current_user: SessionUser = Depends(get_current_user),
    container: Container = Depends(get_container),
) -> list[MessageResponse]:
    """
    Get the conversation's messages, oldest first.

    Raises:
        ConversationNotFound: 404 if conversation not found or not owned
    """
    conversation = await container.conversations.get(conversation_id, current_user.id)
    return [MessageResponse.model_validate(msg) for msg in conversation.messages]


@router.post("/conversation/{conversation_id}/messages")
async def send_message(
    conversation_id: int,
    request: MessageCreate,
    current_user: SessionUser = Depends(get_current_user),
    container: Container = Depends(get_container),
) -> StreamingResponse:
    """
    Send a message and stream the assistant's reply as plain text.

    Flow:
    1. Store user message (ownership checked)
    2. Re-read history and open the assistant stream
    3. Relay chunks as they arrive
    4. Store the complete reply as one "ai" message

    Raises:
        ConversationNotFound: 404 if conversation not found or not owned
        AssistantError: 500 if the assistant is disabled or fails before
            the first chunk
    """
    chunks = await container.orchestrator.open(
        conversation_id,
        current_user.id,
        request.content,
    )
    return StreamingResponse(chunks, media_type="text/plain; charset=utf-8")
