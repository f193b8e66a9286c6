"""Async httpx client for the identity provider (GoTrue-compatible auth API)."""

from __future__ import annotations

import logging
import uuid

import httpx

from src.config import settings

logger = logging.getLogger(__name__)


class IdentityNotConfigured(RuntimeError):
    """No identity provider URL or key is configured."""


class IdentityUnavailable(RuntimeError):
    """The identity provider could not be reached or answered with a server error."""


class IdentityClient:
    """Thin async wrapper around the identity provider's password and user endpoints.

    Endpoints:
        POST {base_url}/auth/v1/token?grant_type=password
        GET  {base_url}/auth/v1/user
    Auth: ``apikey`` header, plus a bearer token for ``/user``.
    """

    def __init__(self, base_url: str | None = None, anon_key: str | None = None) -> None:
        self._base_url = (base_url if base_url is not None else settings.auth.identity_url).rstrip("/")
        self._anon_key = anon_key if anon_key is not None else settings.auth.identity_anon_key
        self._timeout = httpx.Timeout(10.0, connect=5.0)

    @property
    def configured(self) -> bool:
        return bool(self._base_url and self._anon_key)

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        json: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict | None:
        if not self.configured:
            msg = "Identity provider URL/key not set"
            raise IdentityNotConfigured(msg)

        headers = {"apikey": self._anon_key, **(headers or {})}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(
                    method, f"{self._base_url}{path}", headers=headers, params=params, json=json
                )
                response.raise_for_status()
                payload: dict = response.json()
        except httpx.TimeoutException as exc:
            logger.warning("Identity provider timeout on %s", path)
            raise IdentityUnavailable(str(exc)) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status >= 500:
                logger.warning("Identity provider HTTP %s on %s", status, path)
                raise IdentityUnavailable(f"HTTP {status}") from exc
            logger.info("Identity provider rejected %s with HTTP %s", path, status)
            return None
        except httpx.HTTPError as exc:
            logger.warning("Identity provider request failed on %s: %s", path, exc)
            raise IdentityUnavailable(str(exc)) from exc

        return payload

    @staticmethod
    def _user_id(user: object) -> uuid.UUID | None:
        if not isinstance(user, dict) or not user.get("id"):
            return None
        try:
            return uuid.UUID(str(user["id"]))
        except ValueError:
            return None

    async def sign_in_with_password(self, email: str, password: str) -> uuid.UUID | None:
        """Verify credentials; return the user id, or None when they are rejected."""
        payload = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if payload is None:
            return None
        return self._user_id(payload.get("user"))

    async def get_user(self, access_token: str) -> uuid.UUID | None:
        """Resolve a provider access token to a user id, or None when it is invalid."""
        payload = await self._request(
            "GET",
            "/auth/v1/user",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if payload is None:
            return None
        return self._user_id(payload)


# Module-level singleton
identity_client = IdentityClient()
