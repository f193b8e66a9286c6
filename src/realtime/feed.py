"""Snapshot feeds: re-fetch and yield a fresh snapshot on every matching change.

A feed never patches its last result. Any matching notification (or, when
configured, a poll tick) triggers a full re-fetch. Notifications arriving
while a fetch is in flight collapse into one follow-up fetch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from typing import Generic, TypeVar

from src.realtime.events import EventPredicate, subscribe, unsubscribe
from src.schemas.events import ROW_CHANGE_EVENTS, EventType, SystemEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SnapshotFeed(Generic[T]):
    """Turns bus notifications into a stream of snapshots.

    Usage:
        feed = SnapshotFeed(fetch_queue, predicate=lambda e: e.user_id == uid)
        async for snapshot in feed.stream():
            ...
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        event_types: Iterable[EventType] = ROW_CHANGE_EVENTS,
        predicate: EventPredicate | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self.fetch = fetch
        self.event_types = frozenset(event_types)
        self.predicate = predicate
        self.poll_interval = poll_interval

    async def stream(self) -> AsyncIterator[T]:
        """Yield the current snapshot, then one more after each change."""
        changed = asyncio.Event()

        async def on_change(event: SystemEvent) -> None:
            changed.set()

        subscribe(on_change, self.event_types, self.predicate)
        try:
            yield await self.fetch()
            while True:
                try:
                    await asyncio.wait_for(changed.wait(), timeout=self.poll_interval)
                except TimeoutError:
                    logger.debug("Feed poll tick")
                changed.clear()
                yield await self.fetch()
        finally:
            unsubscribe(on_change)


def sse_message(data: str, event: str = "snapshot") -> str:
    """Format one server-sent event frame."""
    lines = "".join(f"data: {line}\n" for line in data.splitlines() or [""])
    return f"event: {event}\n{lines}\n"
