"""Server-sent event responses backed by SnapshotFeeds."""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator, Sequence

from fastapi import Request
from fastapi.responses import StreamingResponse
from pydantic import TypeAdapter

from src.realtime.feed import SnapshotFeed, sse_message
from src.schemas.requests import RequestOut

_request_list: TypeAdapter[list[RequestOut]] = TypeAdapter(list[RequestOut])


def snapshot_json(rows: Sequence[RequestOut]) -> str:
    return _request_list.dump_json(list(rows)).decode()


async def _frames(feed: SnapshotFeed[list[RequestOut]], request: Request) -> AsyncIterator[str]:
    async with contextlib.aclosing(feed.stream()) as snapshots:
        async for rows in snapshots:
            if await request.is_disconnected():
                break
            yield sse_message(snapshot_json(rows))


def sse_response(feed: SnapshotFeed[list[RequestOut]], request: Request) -> StreamingResponse:
    return StreamingResponse(
        _frames(feed, request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
