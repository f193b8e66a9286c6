"""Database query functions for requests and request items.

Shared by the lifecycle engine, the guard, the queue calculator and the
staff/student routers. Every function takes the caller's AsyncSession and
never commits; the lifecycle engine commits each unit of work.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import Select, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.course_request import CourseRequest
from src.models.enums import RequestStatus, RequestType
from src.models.request_item import RequestItem
from src.workflow.aggregator import AggregateOutcome
from src.workflow.states import IN_FLIGHT_STATUSES, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

_LEGACY_TYPE = RequestType.CHANGE_YEAR_LEVEL.value


# ── Single rows ──────────────────────────────────────────────────────


async def get_request(db: AsyncSession, request_id: uuid.UUID) -> CourseRequest | None:
    result = await db.execute(select(CourseRequest).where(CourseRequest.id == request_id))
    return result.scalar_one_or_none()


async def get_items(db: AsyncSession, request_id: uuid.UUID) -> list[RequestItem]:
    """Items of one request in submission order."""
    result = await db.execute(
        select(RequestItem)
        .where(RequestItem.request_id == request_id)
        .order_by(RequestItem.position, RequestItem.created_at)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def replace_items(db: AsyncSession, request_id: uuid.UUID, items: list[RequestItem]) -> None:
    """Drop a request's items and insert a freshly materialized set."""
    await db.execute(delete(RequestItem).where(RequestItem.request_id == request_id))
    for item in items:
        item.request_id = request_id
    db.add_all(items)
    await db.flush()


async def delete_request(db: AsyncSession, request_id: uuid.UUID) -> None:
    """Delete a request; its items go with it (ON DELETE CASCADE)."""
    await db.execute(delete(CourseRequest).where(CourseRequest.id == request_id))
    await db.flush()


# ── Duplicate guard ──────────────────────────────────────────────────


async def find_active_types(
    db: AsyncSession,
    user_id: uuid.UUID,
    request_types: Iterable[RequestType],
    exclude_request_id: uuid.UUID | None = None,
) -> set[RequestType]:
    """Return which of ``request_types`` the user has in pending or processing."""
    wanted = [t.value for t in request_types]
    if not wanted:
        return set()

    stmt = (
        select(CourseRequest.request_type)
        .where(
            CourseRequest.user_id == user_id,
            CourseRequest.request_type.in_(wanted),
            CourseRequest.status.in_([s.value for s in IN_FLIGHT_STATUSES]),
        )
        .distinct()
    )
    if exclude_request_id is not None:
        stmt = stmt.where(CourseRequest.id != exclude_request_id)

    result = await db.execute(stmt)
    return {RequestType(value) for value in result.scalars().all()}


# ── Listings ─────────────────────────────────────────────────────────


def _apply_filters(
    stmt: Select[tuple[CourseRequest]],
    search: str | None,
    college: str | None,
) -> Select[tuple[CourseRequest]]:
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(
            CourseRequest.id_number.ilike(pattern),
            CourseRequest.first_name.ilike(pattern),
            CourseRequest.last_name.ilike(pattern),
            CourseRequest.middle_name.ilike(pattern),
        ))
    if college:
        stmt = stmt.where(CourseRequest.college == college)
    return stmt


async def list_queue(
    db: AsyncSession,
    search: str | None = None,
    college: str | None = None,
    flagged_only: bool = False,
) -> list[CourseRequest]:
    """Staff queue: in-flight itemized requests, oldest first."""
    stmt = select(CourseRequest).where(
        CourseRequest.status.in_([s.value for s in IN_FLIGHT_STATUSES]),
        CourseRequest.request_type != _LEGACY_TYPE,
    )
    stmt = _apply_filters(stmt, search, college)
    if flagged_only:
        stmt = stmt.where(CourseRequest.is_flagged.is_(True))

    result = await db.execute(stmt.order_by(CourseRequest.created_at.asc(), CourseRequest.id.asc()))
    return list(result.scalars().all())


async def list_history(
    db: AsyncSession,
    search: str | None = None,
    college: str | None = None,
    status: RequestStatus | None = None,
    limit: int = 100,
) -> list[CourseRequest]:
    """Staff history: finalized itemized requests, most recently completed first."""
    statuses = [status.value] if status is not None else [s.value for s in TERMINAL_STATUSES]
    stmt = select(CourseRequest).where(
        CourseRequest.status.in_(statuses),
        CourseRequest.request_type != _LEGACY_TYPE,
    )
    stmt = _apply_filters(stmt, search, college)

    result = await db.execute(
        stmt.order_by(CourseRequest.completed_at.desc().nulls_last()).limit(limit)
    )
    return list(result.scalars().all())


async def list_for_user(db: AsyncSession, user_id: uuid.UUID) -> list[CourseRequest]:
    """A student's own itemized requests, newest first."""
    result = await db.execute(
        select(CourseRequest)
        .where(
            CourseRequest.user_id == user_id,
            CourseRequest.request_type != _LEGACY_TYPE,
        )
        .order_by(CourseRequest.created_at.desc())
    )
    return list(result.scalars().all())


# ── Queue position ───────────────────────────────────────────────────


async def pending_queue_snapshot(db: AsyncSession) -> list[tuple[uuid.UUID, datetime]]:
    """(id, created_at) of every queued pending request, in queue order."""
    result = await db.execute(
        select(CourseRequest.id, CourseRequest.created_at)
        .where(
            CourseRequest.status == RequestStatus.PENDING.value,
            CourseRequest.request_type != _LEGACY_TYPE,
        )
        .order_by(CourseRequest.created_at.asc(), CourseRequest.id.asc())
    )
    return [(row[0], row[1]) for row in result.all()]


async def get_request_queue_position(db: AsyncSession, request_id: uuid.UUID) -> int | None:
    """1-based rank of a pending request by (created_at, id); None when not queued."""
    ranked = (
        select(
            CourseRequest.id.label("id"),
            func.row_number()
            .over(order_by=(CourseRequest.created_at.asc(), CourseRequest.id.asc()))
            .label("position"),
        )
        .where(
            CourseRequest.status == RequestStatus.PENDING.value,
            CourseRequest.request_type != _LEGACY_TYPE,
        )
        .subquery()
    )
    result = await db.execute(select(ranked.c.position).where(ranked.c.id == request_id))
    position = result.scalar_one_or_none()
    return int(position) if position is not None else None


# ── Finalization ─────────────────────────────────────────────────────


async def finalize_request_decisions(
    db: AsyncSession,
    request_id: uuid.UUID,
    outcome: AggregateOutcome,
    completed_at: datetime,
) -> None:
    """Write the request status/remarks and every item decision as one unit.

    Runs inside a SAVEPOINT: either the parent row and all items change, or
    none of them do. Rows already loaded in the session are updated in place,
    so callers need not re-read them after the commit.
    """
    async with db.begin_nested():
        await db.execute(
            update(CourseRequest)
            .where(CourseRequest.id == request_id)
            .values(
                status=outcome.status.value,
                remarks=outcome.remarks,
                completed_at=completed_at,
            )
            .execution_options(synchronize_session="evaluate")
        )
        for item in outcome.items:
            await db.execute(
                update(RequestItem)
                .where(RequestItem.id == item.item_id, RequestItem.request_id == request_id)
                .values(status=item.status.value, remarks=item.remarks)
                .execution_options(synchronize_session="evaluate")
            )
    await db.flush()

    logger.debug(
        "Finalized request=%s status=%s items=%d",
        request_id,
        outcome.status.value,
        len(outcome.items),
    )
