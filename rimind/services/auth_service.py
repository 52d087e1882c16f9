"""Wallet login protocol: challenge, signed message check, user upsert.

Flow:
1. Client requests a challenge (nonce + expiry)
2. Client signs build_message({nonce, address, expiresAt}) with its wallet
3. Client submits address, message, nonce, signature
4. Server checks the stored challenge, the message fields and the
   signature, consumes the challenge and returns the (possibly new) user
"""
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from rimind.core.errors import (
    AuthError,
    ChallengeExpired,
    ChallengeNotFound,
    InvalidAddress,
    InvalidNonce,
    InvalidSignature,
)
from rimind.database import SessionFactory
from rimind.models.user import Challenge, User
from rimind.services.challenge_service import ChallengeStore
from rimind.utilities.clock import as_utc, parse_timestamp, utcnow
from rimind.utilities.message import parse_message
from rimind.utilities.wallet import validate_signature

logger = logging.getLogger(__name__)


class AuthService:
    """Service layer for wallet authentication."""

    def __init__(self, session_factory: SessionFactory, challenges: ChallengeStore):
        self._session_factory = session_factory
        self.challenges = challenges

    async def request_challenge(self) -> Challenge:
        """Issue a fresh challenge. Needs no authentication."""
        return await self.challenges.issue()

    async def login(self, address: str, message: str, nonce: str, signature: str) -> User:
        """
        Verify a signed login message and return the wallet's user.

        Args:
            address: Base-58 wallet address (also the Ed25519 public key)
            message: Exact text the wallet signed
            nonce: Nonce of the challenge being answered
            signature: Base-58 signature over message

        Returns:
            Existing or newly created User for address

        Raises:
            ChallengeNotFound: Nonce was never issued or was already used
            ChallengeExpired: Stored challenge or signed expiry is in the past
            InvalidNonce: Signed nonce missing or different from nonce
            InvalidAddress: Signed address missing or different from address
            InvalidSignature: Signature malformed or not made by address
        """
        try:
            user = await self._verify(address, message, nonce, signature)
        except AuthError as e:
            logger.warning(f"Login rejected: reason={e.message}, nonce={nonce}")
            raise

        logger.info(f"Login succeeded: user={user.id}")
        return user

    async def _verify(self, address: str, message: str, nonce: str, signature: str) -> User:
        now = utcnow()

        # Stored challenge
        challenge = await self.challenges.lookup(nonce)
        if challenge is None:
            raise ChallengeNotFound()

        if as_utc(challenge.expires_at) < now:
            raise ChallengeExpired()

        # Signed message fields
        fields = parse_message(message)

        if not fields.get("nonce") or fields["nonce"] != nonce:
            raise InvalidNonce()

        if not fields.get("address") or fields["address"] != address:
            raise InvalidAddress()

        signed_expiry = self._parse_expiry(fields.get("expiresAt"))
        if signed_expiry is None or signed_expiry <= now:
            raise ChallengeExpired()

        # Signature
        try:
            is_valid = validate_signature(address, message, signature)
        except ValueError as e:
            logger.debug(f"Malformed key or signature: {e}")
            raise InvalidSignature() from e

        if not is_valid:
            raise InvalidSignature()

        # Single use: whoever deletes the row first wins
        if not await self.challenges.consume(nonce):
            raise ChallengeNotFound()

        return await self.get_or_create_user(address)

    @staticmethod
    def _parse_expiry(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        try:
            return parse_timestamp(value)
        except ValueError:
            return None

    async def find_user(self, wallet: str) -> Optional[User]:
        async with self._session_factory() as session:
            result = await session.exec(select(User).where(User.wallet == wallet))
            return result.first()

    async def get_or_create_user(self, wallet: str) -> User:
        """
        Return the user for wallet, creating it on first login.

        Two first logins for the same wallet may race; the unique index on
        wallet decides, and the loser re-reads the winner's row.
        """
        user = await self.find_user(wallet)
        if user is not None:
            return user

        async with self._session_factory() as session:
            user = User(wallet=wallet)
            session.add(user)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug(f"Concurrent user insert for wallet={wallet}, re-fetching")
            else:
                await session.refresh(user)
                logger.info(f"User created: id={user.id}")
                return user

        existing = await self.find_user(wallet)
        if existing is None:
            raise RuntimeError(f"User for wallet {wallet} vanished after a duplicate insert")
        return existing
