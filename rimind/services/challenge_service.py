"""Challenge issuance and single-use consumption for wallet login."""
from datetime import timedelta
from typing import Optional
import logging
import uuid

from sqlalchemy import delete
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from rimind.database import SessionFactory
from rimind.models.user import Challenge
from rimind.utilities.clock import utcnow

logger = logging.getLogger(__name__)

# Expired rows are kept this long so a late login still reports
# "Challenge expired" rather than "Challenge not found".
RETENTION = timedelta(days=1)


class ChallengeStore:
    """
    Persistent store of login nonces.

    Each issue() mints a fresh UUID4 nonce (122 random bits). A challenge
    is removed when a login consumes it or when it is purged after expiry.
    Issuing also purges, so the table stays bounded between restarts.
    """

    def __init__(self, session_factory: SessionFactory, ttl: timedelta = timedelta(minutes=5)):
        self._session_factory = session_factory
        self.ttl = ttl

    async def issue(self) -> Challenge:
        """
        Create and persist a new challenge, dropping stale ones first.

        Returns:
            The stored Challenge (nonce, expires_at)
        """
        challenge = Challenge(nonce=str(uuid.uuid4()), expires_at=utcnow() + self.ttl)
        async with self._session_factory() as session:
            await self._purge(session, RETENTION)
            session.add(challenge)
            await session.commit()
            await session.refresh(challenge)

        logger.debug(f"Challenge issued: nonce={challenge.nonce}")
        return challenge

    async def lookup(self, nonce: str) -> Optional[Challenge]:
        """Return the challenge with exactly this nonce, or None."""
        async with self._session_factory() as session:
            statement = select(Challenge).where(Challenge.nonce == nonce)
            result = await session.exec(statement)
            return result.first()

    async def consume(self, nonce: str) -> bool:
        """
        Delete the challenge so it cannot be used again.

        Returns:
            True if this call removed it, False if it was already gone
        """
        async with self._session_factory() as session:
            result = await session.execute(delete(Challenge).where(Challenge.nonce == nonce))
            await session.commit()
            return result.rowcount == 1

    async def purge_expired(self, retention: timedelta = RETENTION) -> int:
        """
        Delete challenges that expired more than `retention` ago.

        Returns:
            Number of rows removed
        """
        async with self._session_factory() as session:
            removed = await self._purge(session, retention)
            await session.commit()
        return removed

    @staticmethod
    async def _purge(session: AsyncSession, retention: timedelta) -> int:
        cutoff = utcnow() - retention
        result = await session.execute(delete(Challenge).where(Challenge.expires_at < cutoff))
        if result.rowcount:
            logger.debug(f"Purged {result.rowcount} expired challenges")
        return result.rowcount
