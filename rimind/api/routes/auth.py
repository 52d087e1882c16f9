"""Wallet authentication routes.

Provides:
- GET /challenge - Issue a login challenge
- POST /login - Verify a signed challenge and set the session cookie
- GET /me - Current session user
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, ConfigDict, field_serializer
from pydantic.alias_generators import to_camel

from rimind.core.deps import Container, get_container, get_current_user
from rimind.core.security import SessionUser
from rimind.utilities.clock import as_utc

router = APIRouter(tags=["auth"])


class ChallengeResponse(BaseModel):
    """Response model for a login challenge."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    nonce: str
    expires_at: datetime

    @field_serializer("expires_at")
    def serialize_expires_at(self, value: datetime) -> str:
        # Same shape as JavaScript's toISOString, e.g. 2026-10-19T12:00:00.000Z
        return as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class LoginRequest(BaseModel):
    """Request model for a signed login."""
    address: str
    message: str
    nonce: str
    signature: str


class LoginResponse(BaseModel):
    message: str


class MeResponse(BaseModel):
    id: int
    wallet: str


@router.get("/challenge", response_model=ChallengeResponse)
async def get_challenge(container: Container = Depends(get_container)) -> ChallengeResponse:
    """Issue a new single-use challenge. No authentication required."""
    challenge = await container.auth.request_challenge()
    return ChallengeResponse(nonce=challenge.nonce, expires_at=challenge.expires_at)


@router.post("/login", response_model=LoginResponse)
async def login(
    request: LoginRequest,
    response: Response,
    container: Container = Depends(get_container),
) -> LoginResponse:
    """
    Log in with a signed challenge.

    The wallet signs build_message({nonce, address, expiresAt}) using the
    values from GET /challenge.

    Raises:
        AuthError: 401 with the reason (challenge not found/expired,
            invalid nonce/address/signature)
    """
    user = await container.auth.login(
        request.address,
        request.message,
        request.nonce,
        request.signature,
    )

    settings = container.settings
    token = container.tokens.issue(user.id, user.wallet)
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_TTL_SECONDS,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )

    return LoginResponse(message="Logged in successfully")


@router.get("/me", response_model=MeResponse)
async def me(current_user: SessionUser = Depends(get_current_user)) -> MeResponse:
    """Return the user bound to the session cookie."""
    return MeResponse(id=current_user.id, wallet=current_user.wallet)
