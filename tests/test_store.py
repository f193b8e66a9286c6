"""Tests for the request store queries.

The session is mocked; each statement handed to ``db.execute`` is compiled
with the PostgreSQL dialect so its filters and ordering can be checked.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from src.models.enums import ItemStatus, RequestStatus, RequestType
from src.workflow import store
from src.workflow.aggregator import AggregateOutcome, ItemOutcome


# ── Helpers ──────────────────────────────────────────────────────────


def _make_db(result=None):
    """Build a mock AsyncSession whose execute returns ``result``."""
    db = AsyncMock()
    db.execute = AsyncMock(return_value=result if result is not None else MagicMock())
    db.flush = AsyncMock()
    return db


def _compiled(stmt):
    compiled = stmt.compile(dialect=postgresql.dialect())
    return str(compiled), compiled.params


def _list_params(params: dict) -> list[list]:
    return [sorted(v) for v in params.values() if isinstance(v, list | tuple)]


def _executed(db) -> tuple[str, dict]:
    return _compiled(db.execute.call_args.args[0])


# ── Duplicate guard lookup ───────────────────────────────────────────


class TestFindActiveTypes:
    @pytest.mark.asyncio()
    async def test_filters_in_flight_statuses(self):
        result = MagicMock()
        result.scalars.return_value.all.return_value = ["add"]
        db = _make_db(result)
        user_id = uuid.uuid4()

        found = await store.find_active_types(db, user_id, [RequestType.ADD, RequestType.DROP])

        assert found == {RequestType.ADD}
        sql, params = _executed(db)
        assert "SELECT DISTINCT requests.request_type" in sql
        assert "requests.user_id" in sql
        assert ["pending", "processing"] in _list_params(params)
        assert ["add", "drop"] in _list_params(params)
        assert user_id in params.values()
        assert "requests.id !=" not in sql

    @pytest.mark.asyncio()
    async def test_excludes_edited_request(self):
        result = MagicMock()
        result.scalars.return_value.all.return_value = []
        db = _make_db(result)
        own_id = uuid.uuid4()

        found = await store.find_active_types(db, uuid.uuid4(), [RequestType.CHANGE], exclude_request_id=own_id)

        assert found == set()
        sql, params = _executed(db)
        assert "requests.id !=" in sql
        assert own_id in params.values()

    @pytest.mark.asyncio()
    async def test_no_types_skips_query(self):
        db = _make_db()
        assert await store.find_active_types(db, uuid.uuid4(), []) == set()
        db.execute.assert_not_awaited()


# ── Queue position ───────────────────────────────────────────────────


class TestQueuePosition:
    @pytest.mark.asyncio()
    async def test_ranks_pending_by_created_at_then_id(self):
        result = MagicMock()
        result.scalar_one_or_none.return_value = 2
        db = _make_db(result)
        request_id = uuid.uuid4()

        position = await store.get_request_queue_position(db, request_id)

        assert position == 2
        sql, params = _executed(db)
        assert "row_number() OVER (ORDER BY requests.created_at ASC, requests.id ASC)" in sql
        assert "requests.status =" in sql
        assert "requests.request_type !=" in sql
        assert "pending" in params.values()
        assert "change_year_level" in params.values()
        assert request_id in params.values()

    @pytest.mark.asyncio()
    async def test_not_queued_is_none(self):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        assert await store.get_request_queue_position(_make_db(result), uuid.uuid4()) is None

    @pytest.mark.asyncio()
    async def test_snapshot_in_queue_order(self):
        first, second = uuid.uuid4(), uuid.uuid4()
        created = datetime(2025, 1, 6, 8, 0, tzinfo=UTC)
        result = MagicMock()
        result.all.return_value = [(first, created), (second, created)]
        db = _make_db(result)

        snapshot = await store.pending_queue_snapshot(db)

        assert snapshot == [(first, created), (second, created)]
        sql, params = _executed(db)
        assert sql.rstrip().endswith("ORDER BY requests.created_at ASC, requests.id ASC")
        assert "pending" in params.values()
        assert "change_year_level" in params.values()


# ── Finalization ─────────────────────────────────────────────────────


class TestFinalizeRequestDecisions:
    @pytest.mark.asyncio()
    async def test_parent_and_items_written_in_one_savepoint(self):
        calls: list[str] = []
        nested = MagicMock()
        nested.__aenter__.side_effect = lambda *a: calls.append("begin")
        nested.__aexit__.side_effect = lambda *a: calls.append("end")

        db = _make_db()
        db.begin_nested = MagicMock(return_value=nested)
        db.execute.side_effect = lambda stmt: calls.append(_compiled(stmt)[0].split(" SET ")[0])
        db.flush.side_effect = lambda: calls.append("flush")

        request_id = uuid.uuid4()
        items = (
            ItemOutcome(uuid.uuid4(), ItemStatus.APPROVED),
            ItemOutcome(uuid.uuid4(), ItemStatus.REJECTED, "Course full"),
        )
        outcome = AggregateOutcome(RequestStatus.PARTIALLY_APPROVED, "Course full", items)

        await store.finalize_request_decisions(db, request_id, outcome, datetime.now(UTC))

        assert calls == [
            "begin",
            "UPDATE requests",
            "UPDATE request_items",
            "UPDATE request_items",
            "end",
            "flush",
        ]

    @pytest.mark.asyncio()
    async def test_item_update_scoped_to_request(self):
        db = _make_db()
        db.begin_nested = MagicMock()
        request_id = uuid.uuid4()
        item_id = uuid.uuid4()
        outcome = AggregateOutcome(RequestStatus.REJECTED, "Late", (ItemOutcome(item_id, ItemStatus.REJECTED, "Late"),))

        await store.finalize_request_decisions(db, request_id, outcome, datetime.now(UTC))

        parent_sql, parent_params = _compiled(db.execute.call_args_list[0].args[0])
        item_sql, item_params = _compiled(db.execute.call_args_list[1].args[0])
        assert "rejected" in parent_params.values()
        assert "requests.id =" in parent_sql
        assert "request_items.id =" in item_sql
        assert "request_items.request_id =" in item_sql
        assert item_id in item_params.values()
        assert request_id in item_params.values()
        assert item_params["remarks"] == "Late"
