"""Staff API: review queue, history, processing and finalization.

Every route requires a session whose profile role is ``staff``.
"""

# ruff: noqa: B008

from __future__ import annotations

import uuid
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.streams import sse_response
from src.api.student import to_detail_out, to_out
from src.auth.deps import require_staff
from src.config import settings
from src.db.engine import async_session_factory, get_session
from src.models.enums import RequestStatus, RequestType
from src.realtime.feed import SnapshotFeed
from src.schemas.requests import FinalizeRequest, FlagUpdate, RequestDetailOut, RequestOut
from src.workflow import store
from src.workflow.engine import request_lifecycle
from src.workflow.reasons import reasons_for

router = APIRouter(prefix="/api/staff", tags=["staff"])

HistoryStatus = Literal["approved", "rejected", "partially_approved"]


async def fetch_queue(
    db: AsyncSession,
    search: str | None = None,
    college: str | None = None,
    flagged_only: bool = False,
) -> list[RequestOut]:
    rows = await store.list_queue(db, search=search, college=college, flagged_only=flagged_only)
    return [to_out(r) for r in rows]


async def fetch_history(
    db: AsyncSession,
    search: str | None = None,
    college: str | None = None,
    status: HistoryStatus | None = None,
    limit: int | None = None,
) -> list[RequestOut]:
    rows = await store.list_history(
        db,
        search=search,
        college=college,
        status=RequestStatus(status) if status else None,
        limit=limit or settings.queue.history_limit,
    )
    return [to_out(r) for r in rows]


# ── Queue ────────────────────────────────────────────────────────────


@router.get("/queue")
async def get_queue(
    search: str | None = Query(default=None),
    college: str | None = Query(default=None),
    flagged_only: bool = Query(default=False),
    db: AsyncSession = Depends(get_session),
    staff_id: uuid.UUID = Depends(require_staff),
) -> list[RequestOut]:
    """In-flight requests, oldest first."""
    return await fetch_queue(db, search, college, flagged_only)


@router.get("/queue/stream")
async def stream_queue(
    request: Request,
    search: str | None = Query(default=None),
    college: str | None = Query(default=None),
    flagged_only: bool = Query(default=False),
    staff_id: uuid.UUID = Depends(require_staff),
) -> StreamingResponse:
    async def fetch() -> list[RequestOut]:
        async with async_session_factory() as db:
            return await fetch_queue(db, search, college, flagged_only)

    return sse_response(SnapshotFeed(fetch), request)


# ── History ──────────────────────────────────────────────────────────


@router.get("/history")
async def get_history(
    search: str | None = Query(default=None),
    college: str | None = Query(default=None),
    status: HistoryStatus | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=1000),
    db: AsyncSession = Depends(get_session),
    staff_id: uuid.UUID = Depends(require_staff),
) -> list[RequestOut]:
    """Finalized requests, most recently completed first."""
    return await fetch_history(db, search, college, status, limit)


@router.get("/history/stream")
async def stream_history(
    request: Request,
    search: str | None = Query(default=None),
    college: str | None = Query(default=None),
    status: HistoryStatus | None = Query(default=None),
    staff_id: uuid.UUID = Depends(require_staff),
) -> StreamingResponse:
    async def fetch() -> list[RequestOut]:
        async with async_session_factory() as db:
            return await fetch_history(db, search, college, status)

    return sse_response(SnapshotFeed(fetch), request)


# ── Single request ───────────────────────────────────────────────────


@router.get("/requests/{request_id}")
async def get_request(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    staff_id: uuid.UUID = Depends(require_staff),
) -> RequestDetailOut:
    detail = await request_lifecycle.get_detail(db, request_id, staff_id, is_staff=True)
    return to_detail_out(detail)


@router.post("/requests/{request_id}/start")
async def start_processing(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    staff_id: uuid.UUID = Depends(require_staff),
) -> RequestOut:
    request = await request_lifecycle.start_processing(db, request_id, actor_id=str(staff_id))
    return to_out(request)


@router.post("/requests/{request_id}/finalize")
async def finalize(
    request_id: uuid.UUID,
    body: FinalizeRequest,
    db: AsyncSession = Depends(get_session),
    staff_id: uuid.UUID = Depends(require_staff),
) -> RequestDetailOut:
    detail = await request_lifecycle.finalize(db, request_id, body, actor_id=str(staff_id))
    return to_detail_out(detail)


@router.post("/requests/{request_id}/refinalize")
async def refinalize(
    request_id: uuid.UUID,
    body: FinalizeRequest,
    db: AsyncSession = Depends(get_session),
    staff_id: uuid.UUID = Depends(require_staff),
) -> RequestDetailOut:
    """Edit a decision from history; same aggregation as finalize."""
    detail = await request_lifecycle.finalize(db, request_id, body, actor_id=str(staff_id), reopen=True)
    return to_detail_out(detail)


@router.put("/requests/{request_id}/flag")
async def set_flag(
    request_id: uuid.UUID,
    body: FlagUpdate,
    db: AsyncSession = Depends(get_session),
    staff_id: uuid.UUID = Depends(require_staff),
) -> RequestOut:
    request = await request_lifecycle.update_flag(db, request_id, body.flagged, actor_id=str(staff_id))
    return to_out(request)


@router.get("/reject-reasons/{request_type}")
async def reject_reasons(
    request_type: RequestType,
    staff_id: uuid.UUID = Depends(require_staff),
) -> dict:
    return {"request_type": request_type.value, "reasons": list(reasons_for(request_type))}
