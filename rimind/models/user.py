"""User and Challenge SQLModel definitions for wallet authentication.

Models:
- User: Wallet identity, created on first successful login
- Challenge: Single-use login nonce with an absolute expiry
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from rimind.utilities.clock import utcnow


class User(SQLModel, table=True):
    """
    Wallet-backed user.

    The wallet address is the identity and never changes once stored.
    Uniqueness on wallet is what settles concurrent first logins.
    """
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    wallet: str = Field(unique=True, index=True, nullable=False, max_length=64)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Challenge(SQLModel, table=True):
    """Login challenge. Deleted when consumed or purged after expiry."""
    __tablename__ = "challenge"

    id: Optional[int] = Field(default=None, primary_key=True)
    nonce: str = Field(unique=True, index=True, nullable=False, max_length=64)
    expires_at: datetime = Field(nullable=False, index=True, sa_type=DateTime(timezone=True))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
