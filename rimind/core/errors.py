"""Domain exceptions and their HTTP status codes.

Routes never build error responses for these by hand; the handlers
registered in rimind.main map each class to ``{"message": ...}`` with the
class's status_code.
"""
from typing import Optional

from fastapi import status


class RimindError(Exception):
    """Base class for errors that are safe to show to the client."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message


# Authentication (always 401)

class AuthError(RimindError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Unauthorized"


class ChallengeNotFound(AuthError):
    message = "Challenge not found"


class ChallengeExpired(AuthError):
    message = "Challenge expired"


class InvalidNonce(AuthError):
    message = "Invalid nonce"


class InvalidAddress(AuthError):
    message = "Invalid address"


class InvalidSignature(AuthError):
    message = "Invalid signature"


class Unauthorized(AuthError):
    pass


class UserNotFound(AuthError):
    """Session refers to a user row that no longer exists."""


# Not found (404)

class NotFoundError(RimindError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Not found"


class ConversationNotFound(NotFoundError):
    message = "Conversation not found"


# Assistant / upstream (500)

class AssistantError(RimindError):
    message = "AI service temporarily unavailable"


class AssistantUnavailable(AssistantError):
    message = "AI responses are disabled on this server"


class AssistantTimeout(AssistantError):
    message = "AI service timed out"
