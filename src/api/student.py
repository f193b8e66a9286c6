"""Student API: submit, list, edit and cancel one's own course requests."""

# ruff: noqa: B008

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.streams import sse_response
from src.auth.deps import current_user_id
from src.config import settings
from src.db.engine import async_session_factory, get_session
from src.models.course_request import CourseRequest
from src.realtime.feed import SnapshotFeed
from src.schemas.requests import (
    BatchResultOut,
    BatchSubmission,
    QueuePositionOut,
    RequestDetailOut,
    RequestItemOut,
    RequestOut,
    Submission,
)
from src.workflow import store
from src.workflow.engine import RequestDetail, request_lifecycle
from src.workflow.queue import queue_calculator

router = APIRouter(prefix="/api/requests", tags=["student"])


def to_out(request: CourseRequest, position: int | None = None) -> RequestOut:
    return RequestOut.model_validate(request).model_copy(update={"queue_position": position})


def to_detail_out(detail: RequestDetail) -> RequestDetailOut:
    base = to_out(detail.request, detail.queue_position)
    return RequestDetailOut(
        **base.model_dump(),
        items=[RequestItemOut.model_validate(item) for item in detail.items],
    )


async def list_own_requests(db: AsyncSession, user_id: uuid.UUID) -> list[RequestOut]:
    """The student's requests with queue positions from one pending snapshot."""
    rows = await store.list_for_user(db, user_id)
    positions = await queue_calculator.queue_positions(db, [r.id for r in rows])
    return [to_out(r, positions.get(r.id)) for r in rows]


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_request(
    submission: Submission,
    db: AsyncSession = Depends(get_session),
    user_id: uuid.UUID = Depends(current_user_id),
) -> RequestOut:
    request = await request_lifecycle.submit(db, user_id, submission)
    position = await queue_calculator.queue_position(db, request.id)
    return to_out(request, position)


@router.post("/batch", status_code=status.HTTP_201_CREATED)
async def submit_batch(
    batch: BatchSubmission,
    db: AsyncSession = Depends(get_session),
    user_id: uuid.UUID = Depends(current_user_id),
) -> BatchResultOut:
    result = await request_lifecycle.submit_batch(db, user_id, batch)
    positions = await queue_calculator.queue_positions(db, [r.id for r in result.submitted])
    return BatchResultOut(
        submitted=[to_out(r, positions.get(r.id)) for r in result.submitted],
        skipped=result.skipped,
    )


@router.get("")
async def list_requests(
    db: AsyncSession = Depends(get_session),
    user_id: uuid.UUID = Depends(current_user_id),
) -> list[RequestOut]:
    return await list_own_requests(db, user_id)


@router.get("/stream")
async def stream_requests(
    request: Request,
    user_id: uuid.UUID = Depends(current_user_id),
) -> StreamingResponse:
    """SSE: the student's list, re-sent on their own row changes and every poll tick."""

    async def fetch() -> list[RequestOut]:
        async with async_session_factory() as db:
            return await list_own_requests(db, user_id)

    feed = SnapshotFeed(
        fetch,
        predicate=lambda event: event.user_id == user_id,
        poll_interval=settings.queue.queue_poll_interval_seconds,
    )
    return sse_response(feed, request)


@router.get("/{request_id}")
async def get_request(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    user_id: uuid.UUID = Depends(current_user_id),
) -> RequestDetailOut:
    detail = await request_lifecycle.get_detail(db, request_id, user_id)
    return to_detail_out(detail)


@router.patch("/{request_id}")
async def edit_request(
    request_id: uuid.UUID,
    submission: Submission,
    db: AsyncSession = Depends(get_session),
    user_id: uuid.UUID = Depends(current_user_id),
) -> RequestDetailOut:
    await request_lifecycle.update_pending(db, request_id, user_id, submission)
    detail = await request_lifecycle.get_detail(db, request_id, user_id)
    return to_detail_out(detail)


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_request(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    user_id: uuid.UUID = Depends(current_user_id),
) -> Response:
    await request_lifecycle.cancel(db, request_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{request_id}/queue-position")
async def get_queue_position(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    user_id: uuid.UUID = Depends(current_user_id),
) -> QueuePositionOut:
    detail = await request_lifecycle.get_detail(db, request_id, user_id)
    return QueuePositionOut(request_id=request_id, position=detail.queue_position)
