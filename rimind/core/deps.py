"""Component graph and FastAPI dependencies.

The Container is built once in create_app() and stored on app.state;
route dependencies only read from it.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from rimind.config import Settings
from rimind.core.errors import Unauthorized
from rimind.core.security import SessionTokens, SessionUser
from rimind.database import SessionFactory, create_engine, create_session_factory
from rimind.services.assistant import Assistant, OpenAIAssistant
from rimind.services.auth_service import AuthService
from rimind.services.challenge_service import ChallengeStore
from rimind.services.chat_service import ConversationStore
from rimind.services.streaming import StreamingResponseOrchestrator


@dataclass
class Container:
    """Every long-lived component, tied to the application's lifetime."""
    settings: Settings
    engine: AsyncEngine
    session_factory: SessionFactory
    tokens: SessionTokens
    challenges: ChallengeStore
    auth: AuthService
    conversations: ConversationStore
    orchestrator: StreamingResponseOrchestrator


def build_assistant(settings: Settings) -> Optional[Assistant]:
    """OpenAI assistant, or None when no API key is configured."""
    if not settings.OPENAI_API_KEY:
        return None
    return OpenAIAssistant(
        api_key=settings.OPENAI_API_KEY,
        model=settings.OPENAI_MODEL,
        timeout=settings.OPENAI_TIMEOUT,
        system_prompt=settings.ASSISTANT_SYSTEM_PROMPT or None,
    )


def build_container(settings: Settings, assistant: Optional[Assistant] = None) -> Container:
    """
    Wire the component graph.

    Args:
        settings: Application settings
        assistant: Assistant to use instead of the one built from settings

    Returns:
        Container holding every component
    """
    engine = create_engine(settings.DATABASE_URL)
    session_factory = create_session_factory(engine)

    challenges = ChallengeStore(
        session_factory, ttl=timedelta(seconds=settings.CHALLENGE_TTL_SECONDS)
    )
    conversations = ConversationStore(session_factory)

    return Container(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        tokens=SessionTokens(
            settings.JWT_SECRET_KEY,
            ttl=timedelta(seconds=settings.SESSION_TTL_SECONDS),
            algorithm=settings.JWT_ALGORITHM,
        ),
        challenges=challenges,
        auth=AuthService(session_factory, challenges),
        conversations=conversations,
        orchestrator=StreamingResponseOrchestrator(
            conversations,
            assistant if assistant is not None else build_assistant(settings),
            chunk_timeout=settings.OPENAI_TIMEOUT,
        ),
    )


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_current_user(request: Request) -> SessionUser:
    """
    Resolve the session cookie to the logged-in user.

    Raises:
        Unauthorized: If the cookie is missing or its token does not verify
    """
    container = get_container(request)
    token = request.cookies.get(container.settings.SESSION_COOKIE_NAME)
    if not token:
        raise Unauthorized()
    return container.tokens.verify(token)
