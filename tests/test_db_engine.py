"""Tests for the lazily created Redis client."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.db import engine as db_engine


@pytest.fixture(autouse=True)
def reset_redis():
    db_engine._redis = None
    yield
    db_engine._redis = None


@pytest.fixture()
def from_url():
    with patch("src.db.engine.aioredis.from_url", return_value=MagicMock(aclose=AsyncMock())) as mock:
        yield mock


class TestGetRedis:
    def test_created_on_first_use_only(self, from_url):
        from_url.assert_not_called()

        first = db_engine.get_redis()
        second = db_engine.get_redis()

        assert first is second
        from_url.assert_called_once()
        assert from_url.call_args.kwargs == {"decode_responses": True}

    @pytest.mark.asyncio()
    async def test_close_skips_unused_client(self, from_url):
        with patch.object(db_engine, "engine", MagicMock(dispose=AsyncMock())):
            await db_engine.close_db()
        from_url.assert_not_called()

    @pytest.mark.asyncio()
    async def test_close_releases_client(self, from_url):
        client = db_engine.get_redis()
        with patch.object(db_engine, "engine", MagicMock(dispose=AsyncMock())):
            await db_engine.close_db()

        client.aclose.assert_awaited_once()
        assert db_engine._redis is None
