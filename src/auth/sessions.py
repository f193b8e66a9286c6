"""Opaque cookie sessions: issue, look up, rotate and revoke.

A token is 32 random bytes, hex encoded. Only its SHA-256 hash is stored,
so a leaked table cannot be replayed as cookies.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.models.auth_session import AuthSession
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a session token."""
    return hashlib.sha256(token.encode()).hexdigest()


def new_token() -> str:
    return secrets.token_hex(32)


def session_event(
    event_type: EventType,
    user_id: uuid.UUID,
    data: dict | None = None,
) -> SystemEvent:
    """Event for a session change the caller has already committed."""
    return SystemEvent(
        event_type=event_type,
        user_id=user_id,
        actor_id=str(user_id),
        data=data or {},
        source_module="auth.sessions",
    )


@dataclass(frozen=True)
class IssuedSession:
    """A freshly issued cookie token; the plain token exists only here."""

    token: str
    user_id: uuid.UUID
    expires_at: datetime


class SessionStore:
    """Session rows keyed by token hash.

    Methods only flush; the caller commits and then emits the matching
    ``session_event``.
    """

    def __init__(self, max_age_seconds: int | None = None) -> None:
        self.max_age = timedelta(
            seconds=max_age_seconds if max_age_seconds is not None else settings.auth.session_max_age_seconds
        )

    async def create(self, db: AsyncSession, user_id: uuid.UUID) -> IssuedSession:
        """Insert a session for ``user_id`` and return its plain token."""
        now = datetime.now(UTC)
        token = new_token()
        row = AuthSession(
            user_id=user_id,
            token_hash=hash_token(token),
            last_seen_at=now,
            expires_at=now + self.max_age,
            revoked=False,
        )
        db.add(row)
        await db.flush()

        logger.info("Session created for user=%s expires=%s", user_id, row.expires_at.isoformat())
        return IssuedSession(token=token, user_id=user_id, expires_at=row.expires_at)

    async def get(self, db: AsyncSession, token: str) -> AuthSession | None:
        result = await db.execute(select(AuthSession).where(AuthSession.token_hash == hash_token(token)))
        return result.scalar_one_or_none()

    @staticmethod
    def is_active(row: AuthSession, now: datetime | None = None) -> bool:
        """Not revoked and not past its expiry."""
        now = now or datetime.now(UTC)
        return not row.revoked and row.expires_at > now

    async def get_active(self, db: AsyncSession, token: str) -> AuthSession | None:
        """Return the session if it is usable, stamping ``last_seen_at``."""
        row = await self.get(db, token)
        if row is None or not self.is_active(row):
            return None
        row.last_seen_at = datetime.now(UTC)
        await db.flush()
        return row

    async def revoke(self, db: AsyncSession, token: str) -> uuid.UUID | None:
        """Revoke one token; returns its owner, or None for an unknown token."""
        result = await db.execute(
            update(AuthSession)
            .where(AuthSession.token_hash == hash_token(token))
            .values(revoked=True)
            .returning(AuthSession.user_id)
        )
        user_id = result.scalar_one_or_none()
        if user_id is not None:
            logger.info("Session revoked for user=%s", user_id)
        return user_id

    async def rotate(self, db: AsyncSession, token: str) -> IssuedSession | None:
        """Swap a valid token for a new one with a fresh expiry.

        Returns None (and issues nothing) when the token is unknown, revoked or expired.
        """
        row = await self.get(db, token)
        if row is None or not self.is_active(row):
            return None

        row.revoked = True
        issued = await self.create(db, row.user_id)

        logger.info("Session rotated for user=%s", row.user_id)
        return issued

    async def revoke_all(self, db: AsyncSession, user_id: uuid.UUID) -> int:
        """Revoke every live session of a user; returns how many were revoked."""
        result = await db.execute(
            update(AuthSession)
            .where(AuthSession.user_id == user_id, AuthSession.revoked.is_(False))
            .values(revoked=True)
            .returning(AuthSession.id)
        )
        count = len(result.scalars().all())

        logger.info("Revoked %d sessions for user=%s", count, user_id)
        return count


# Module-level singleton
session_store = SessionStore()
