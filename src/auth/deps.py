"""FastAPI dependencies: resolve the session cookie to a user, and gate staff routes."""

from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.sessions import session_store
from src.config import settings
from src.db.engine import get_session
from src.models.auth_session import AuthSession
from src.models.enums import UserRole
from src.models.profile import Profile


async def current_session(
    request: Request,
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> AuthSession:
    """FastAPI dependency: the caller's live session, or 401."""
    token = request.cookies.get(settings.auth.session_cookie_name)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="no_session")

    row = await session_store.get_active(db, token)
    if row is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_session")
    return row


async def current_user_id(
    session: AuthSession = Depends(current_session),  # noqa: B008
) -> uuid.UUID:
    return session.user_id


async def get_role(db: AsyncSession, user_id: uuid.UUID) -> UserRole:
    """Role from the profiles table; users without a profile are students."""
    result = await db.execute(select(Profile.role).where(Profile.user_id == user_id))
    role = result.scalar_one_or_none()
    return UserRole(role) if role else UserRole.STUDENT


async def require_staff(
    user_id: uuid.UUID = Depends(current_user_id),  # noqa: B008
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> uuid.UUID:
    """FastAPI dependency: the caller's user id, or 403 unless they are staff."""
    if await get_role(db, user_id) is not UserRole.STAFF:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
    return user_id
