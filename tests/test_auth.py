"""Tests for cookie sessions and the identity provider client."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.auth.identity import IdentityClient, IdentityNotConfigured, IdentityUnavailable
from src.auth.sessions import SessionStore, hash_token, new_token, session_event
from src.schemas.events import EventType

# ── Helpers ──────────────────────────────────────────────────────────


def _make_db() -> MagicMock:
    db = MagicMock()
    db.execute = AsyncMock()
    db.flush = AsyncMock()
    return db


def _make_row(revoked: bool = False, expires_in: timedelta = timedelta(days=1)) -> SimpleNamespace:
    now = datetime.now(UTC)
    return SimpleNamespace(
        user_id=uuid.uuid4(),
        revoked=revoked,
        expires_at=now + expires_in,
        last_seen_at=now - timedelta(hours=1),
    )


def _response(status: int, payload: dict | None = None) -> httpx.Response:
    return httpx.Response(status, json=payload or {}, request=httpx.Request("POST", "https://id.example/auth"))


# ── Sessions ─────────────────────────────────────────────────────────


class TestTokens:
    def test_hash_is_sha256_hex(self):
        digest = hash_token("abc")
        assert len(digest) == 64
        assert digest == hash_token("abc")
        assert digest != hash_token("abd")

    def test_new_token_is_32_bytes_hex(self):
        token = new_token()
        assert len(token) == 64
        int(token, 16)
        assert token != new_token()


class TestSessionStore:
    def test_is_active(self):
        assert SessionStore.is_active(_make_row())
        assert not SessionStore.is_active(_make_row(revoked=True))
        assert not SessionStore.is_active(_make_row(expires_in=timedelta(seconds=-1)))

    @pytest.mark.asyncio()
    async def test_create_stores_only_hash(self):
        store = SessionStore(max_age_seconds=3600)
        db = _make_db()
        user_id = uuid.uuid4()

        issued = await store.create(db, user_id)

        row = db.add.call_args.args[0]
        assert row.token_hash == hash_token(issued.token)
        assert row.user_id == user_id
        assert row.expires_at - row.last_seen_at == timedelta(hours=1)
        db.flush.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_get_active_touches_last_seen(self):
        store = SessionStore()
        row = _make_row()
        before = row.last_seen_at

        with patch.object(store, "get", new_callable=AsyncMock, return_value=row):
            assert await store.get_active(_make_db(), "tok") is row
        assert row.last_seen_at > before

    @pytest.mark.asyncio()
    async def test_get_active_rejects_expired(self):
        store = SessionStore()
        with patch.object(store, "get", new_callable=AsyncMock, return_value=_make_row(expires_in=-timedelta(1))):
            assert await store.get_active(_make_db(), "tok") is None

    @pytest.mark.asyncio()
    async def test_rotate_revokes_old_token(self):
        store = SessionStore()
        old = _make_row()
        db = _make_db()

        with patch.object(store, "get", new_callable=AsyncMock, return_value=old):
            issued = await store.rotate(db, "old-token")

        assert old.revoked is True
        assert issued.user_id == old.user_id
        assert db.add.call_args.args[0].token_hash == hash_token(issued.token)

    @pytest.mark.asyncio()
    async def test_rotate_invalid_issues_nothing(self):
        store = SessionStore()
        db = _make_db()
        with patch.object(store, "get", new_callable=AsyncMock, return_value=_make_row(revoked=True)):
            assert await store.rotate(db, "tok") is None
        db.add.assert_not_called()

    @pytest.mark.asyncio()
    async def test_revoke_unknown_token_returns_none(self):
        db = _make_db()
        db.execute.return_value = MagicMock(scalar_one_or_none=MagicMock(return_value=None))

        assert await SessionStore().revoke(db, "nope") is None

    @pytest.mark.asyncio()
    async def test_revoke_returns_owner(self):
        db = _make_db()
        user_id = uuid.uuid4()
        db.execute.return_value = MagicMock(scalar_one_or_none=MagicMock(return_value=user_id))

        assert await SessionStore().revoke(db, "tok") == user_id

    @pytest.mark.asyncio()
    async def test_revoke_all_counts(self):
        db = _make_db()
        result = MagicMock()
        result.scalars.return_value.all.return_value = [uuid.uuid4(), uuid.uuid4()]
        db.execute.return_value = result

        assert await SessionStore().revoke_all(db, uuid.uuid4()) == 2

    def test_session_event(self):
        user_id = uuid.uuid4()
        event = session_event(EventType.SESSIONS_REVOKED_ALL, user_id, {"count": 2})

        assert event.user_id == user_id
        assert event.actor_id == str(user_id)
        assert event.data == {"count": 2}
        assert event.source_module == "auth.sessions"


# ── Identity provider ────────────────────────────────────────────────


@pytest.fixture()
def http_client():
    with patch("src.auth.identity.httpx.AsyncClient") as client_cls:
        client = MagicMock()
        client.request = AsyncMock()
        client_cls.return_value.__aenter__ = AsyncMock(return_value=client)
        client_cls.return_value.__aexit__ = AsyncMock(return_value=False)
        yield client


class TestIdentityClient:
    @pytest.mark.asyncio()
    async def test_password_sign_in(self, http_client):
        user_id = uuid.uuid4()
        http_client.request.return_value = _response(200, {"user": {"id": str(user_id)}})
        identity = IdentityClient("https://id.example/", "anon")

        assert await identity.sign_in_with_password("a@b.c", "pw") == user_id

        method, url = http_client.request.call_args.args
        assert (method, url) == ("POST", "https://id.example/auth/v1/token")
        assert http_client.request.call_args.kwargs["params"] == {"grant_type": "password"}
        assert http_client.request.call_args.kwargs["headers"]["apikey"] == "anon"

    @pytest.mark.asyncio()
    async def test_bad_credentials(self, http_client):
        http_client.request.return_value = _response(400, {"error": "invalid_grant"})
        identity = IdentityClient("https://id.example", "anon")

        assert await identity.sign_in_with_password("a@b.c", "wrong") is None

    @pytest.mark.asyncio()
    async def test_get_user_sends_bearer(self, http_client):
        user_id = uuid.uuid4()
        http_client.request.return_value = _response(200, {"id": str(user_id)})
        identity = IdentityClient("https://id.example", "anon")

        assert await identity.get_user("access") == user_id
        assert http_client.request.call_args.kwargs["headers"]["Authorization"] == "Bearer access"

    @pytest.mark.asyncio()
    async def test_server_error_unavailable(self, http_client):
        http_client.request.return_value = _response(503)
        identity = IdentityClient("https://id.example", "anon")

        with pytest.raises(IdentityUnavailable):
            await identity.get_user("access")

    @pytest.mark.asyncio()
    async def test_timeout_unavailable(self, http_client):
        http_client.request.side_effect = httpx.ReadTimeout("slow")
        identity = IdentityClient("https://id.example", "anon")

        with pytest.raises(IdentityUnavailable):
            await identity.get_user("access")

    @pytest.mark.asyncio()
    async def test_not_configured(self):
        identity = IdentityClient("", "")
        assert not identity.configured
        with pytest.raises(IdentityNotConfigured):
            await identity.get_user("access")
