"""Signed session tokens carried in the accessToken cookie."""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging

import jwt

from rimind.core.errors import Unauthorized

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionUser:
    """Identity recovered from a verified session token."""
    id: int
    wallet: str


class SessionTokens:
    """
    HS256 JWT issuer/verifier.

    Claims: id, wallet, iat, exp. Every verification failure is reported
    as the same Unauthorized error.
    """

    def __init__(self, secret: str, ttl: timedelta, algorithm: str = "HS256"):
        self._secret = secret
        self._algorithm = algorithm
        self.ttl = ttl

    def issue(self, user_id: int, wallet: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "id": user_id,
            "wallet": wallet,
            "iat": now,
            "exp": now + self.ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> SessionUser:
        """
        Decode and validate a session token.

        Raises:
            Unauthorized: If the token is malformed, expired, wrongly signed,
                or missing the id/wallet claims
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "id", "wallet"]},
            )
        except jwt.PyJWTError as e:
            logger.debug(f"Session token rejected: {e}")
            raise Unauthorized() from e

        user_id = claims.get("id")
        wallet = claims.get("wallet")
        if not isinstance(user_id, int) or not isinstance(wallet, str):
            raise Unauthorized()

        return SessionUser(id=user_id, wallet=wallet)
