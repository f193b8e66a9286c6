"""Session relay: exchanges identity-provider credentials for an HttpOnly cookie.

Endpoints answer ``{"ok": true}`` on success and ``{"error": <code>}`` on
failure, so the web client can branch on the code alone.
"""

# ruff: noqa: B008

from __future__ import annotations

import logging
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.identity import IdentityNotConfigured, IdentityUnavailable, identity_client
from src.auth.sessions import IssuedSession, session_event, session_store
from src.config import settings
from src.db.engine import get_session
from src.realtime.events import emit
from src.schemas.events import EventType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])


class LoginBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: str | None = None
    password: str | None = None
    remember_me: bool = False
    access_token: str | None = None


def effective_same_site() -> str:
    """SameSite for the session cookie.

    The configured value only holds when the client is served from this
    server's own localhost port; any other origin is cross-site and needs ``none``.
    """
    configured = settings.auth.session_cookie_samesite
    try:
        client = urlsplit(settings.auth.client_origin)
        port = client.port or (443 if client.scheme == "https" else 80)
    except ValueError:
        return configured
    same_origin = client.hostname == "localhost" and port == settings.auth.port
    return configured if same_origin else "none"


def _error(code: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": code}, status_code=status_code)


def _ok() -> JSONResponse:
    return JSONResponse({"ok": True})


def _set_cookie(response: JSONResponse, issued: IssuedSession) -> None:
    response.set_cookie(
        key=settings.auth.session_cookie_name,
        value=issued.token,
        max_age=settings.auth.session_max_age_seconds,
        httponly=True,
        secure=settings.is_production,
        samesite=effective_same_site(),  # type: ignore[arg-type]
        path="/",
    )


def _clear_cookie(response: JSONResponse) -> None:
    response.delete_cookie(settings.auth.session_cookie_name, path="/")


@router.post("/login")
async def login(body: LoginBody, db: AsyncSession = Depends(get_session)) -> JSONResponse:
    """Verify credentials (or a provider access token); issue a cookie when remember_me is set."""
    try:
        if body.access_token:
            user_id = await identity_client.get_user(body.access_token)
            if user_id is None:
                return _error("invalid_token", status.HTTP_401_UNAUTHORIZED)
        else:
            if not body.email or not body.password:
                return _error("invalid_request", status.HTTP_400_BAD_REQUEST)
            user_id = await identity_client.sign_in_with_password(body.email, body.password)
            if user_id is None:
                return _error("invalid_credentials", status.HTTP_401_UNAUTHORIZED)

        if not body.remember_me:
            return _ok()

        issued = await session_store.create(db, user_id)
        await db.commit()
    except IdentityNotConfigured:
        return _error("server_not_configured", status.HTTP_500_INTERNAL_SERVER_ERROR)
    except (IdentityUnavailable, SQLAlchemyError):
        logger.exception("Login failed")
        return _error("server_error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    await emit(session_event(EventType.SESSION_CREATED, user_id, {"expires_at": issued.expires_at.isoformat()}))
    response = _ok()
    _set_cookie(response, issued)
    return response


@router.get("/session/refresh")
async def refresh_session(request: Request, db: AsyncSession = Depends(get_session)) -> JSONResponse:
    """Rotate the cookie token; the old token stops working."""
    token = request.cookies.get(settings.auth.session_cookie_name)
    if not token:
        return _error("no_session", status.HTTP_401_UNAUTHORIZED)

    try:
        issued = await session_store.rotate(db, token)
        await db.commit()
    except SQLAlchemyError:
        logger.exception("Session refresh failed")
        return _error("server_error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    if issued is None:
        response = _error("invalid_session", status.HTTP_401_UNAUTHORIZED)
        _clear_cookie(response)
        return response

    await emit(session_event(
        EventType.SESSION_ROTATED, issued.user_id, {"expires_at": issued.expires_at.isoformat()}
    ))
    response = _ok()
    _set_cookie(response, issued)
    return response


@router.get("/session/me")
async def session_me(request: Request, db: AsyncSession = Depends(get_session)) -> JSONResponse:
    token = request.cookies.get(settings.auth.session_cookie_name)
    if not token:
        return _error("no_session", status.HTTP_401_UNAUTHORIZED)

    try:
        row = await session_store.get(db, token)
    except SQLAlchemyError:
        logger.exception("Session lookup failed")
        return _error("server_error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    if row is None:
        return _error("invalid_session", status.HTTP_401_UNAUTHORIZED)
    if not session_store.is_active(row):
        return _error("expired", status.HTTP_401_UNAUTHORIZED)
    return JSONResponse({"userId": str(row.user_id)})


@router.post("/logout")
async def logout(request: Request, db: AsyncSession = Depends(get_session)) -> JSONResponse:
    token = request.cookies.get(settings.auth.session_cookie_name)
    user_id = None
    try:
        if token:
            user_id = await session_store.revoke(db, token)
            await db.commit()
    except SQLAlchemyError:
        logger.exception("Logout failed")
        return _error("server_error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    if user_id is not None:
        await emit(session_event(EventType.SESSION_REVOKED, user_id))
    response = _ok()
    _clear_cookie(response)
    return response


@router.post("/revoke-all")
async def revoke_all(request: Request, db: AsyncSession = Depends(get_session)) -> JSONResponse:
    """Sign the caller out everywhere. Requires a live session."""
    token = request.cookies.get(settings.auth.session_cookie_name)
    if not token:
        return _error("no_session", status.HTTP_401_UNAUTHORIZED)

    try:
        row = await session_store.get_active(db, token)
        if row is None:
            return _error("invalid_session", status.HTTP_401_UNAUTHORIZED)
        count = await session_store.revoke_all(db, row.user_id)
        await db.commit()
    except SQLAlchemyError:
        logger.exception("Revoke-all failed")
        return _error("server_error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    await emit(session_event(EventType.SESSIONS_REVOKED_ALL, row.user_id, {"count": count}))
    response = _ok()
    _clear_cookie(response)
    return response


@router.get("/health")
async def auth_health() -> dict:
    return {
        "clientConfigured": identity_client.configured,
        "cookie": {
            "name": settings.auth.session_cookie_name,
            "secure": settings.is_production,
            "sameSite": settings.auth.session_cookie_samesite,
            "effectiveSameSite": effective_same_site(),
            "maxAgeSeconds": settings.auth.session_max_age_seconds,
        },
        "corsOrigin": settings.auth.client_origin,
    }
