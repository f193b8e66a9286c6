"""Event emitter and subscriber system.

Async pub/sub for SystemEvents. Every lifecycle operation emits events that
are consumed by the audit logger, snapshot feeds and the Redis relay.

Usage:
    # Emit an event from anywhere:
    from src.realtime.events import emit

    await emit(SystemEvent(
        event_type=EventType.REQUEST_SUBMITTED,
        request_id=request.id,
        user_id=request.user_id,
    ))

    # Register a subscriber, optionally narrowed to some rows:
    from src.realtime.events import subscribe

    subscribe(handler, ROW_CHANGE_EVENTS, predicate=lambda e: e.user_id == me)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import dataclass
from typing import Any

from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

# Type aliases for event handler functions and row filters
EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]
EventPredicate = Callable[[SystemEvent], bool]


@dataclass(frozen=True)
class _Subscription:
    handler: EventHandler
    predicate: EventPredicate | None = None

    def matches(self, event: SystemEvent) -> bool:
        return self.predicate is None or self.predicate(event)


# ── Internal state ───────────────────────────────────────────────────

_subscribers: list[_Subscription] = []
_type_subscribers: dict[EventType, list[_Subscription]] = {}
_queue: asyncio.Queue[SystemEvent] | None = None
_worker_task: asyncio.Task[None] | None = None


# ── Public API ───────────────────────────────────────────────────────


def subscribe(
    handler: EventHandler,
    event_types: Iterable[EventType] | None = None,
    predicate: EventPredicate | None = None,
) -> None:
    """Register an event handler.

    Args:
        handler: Async function that accepts a SystemEvent.
        event_types: If provided, handler only receives these event types.
                     If None, handler receives ALL events.
        predicate: Optional row filter, e.g. ``lambda e: e.user_id == uid``.
    """
    subscription = _Subscription(handler=handler, predicate=predicate)
    if event_types is None:
        _subscribers.append(subscription)
        logger.info("Registered global event subscriber: %s", handler.__name__)
    else:
        types = list(event_types)
        for et in types:
            _type_subscribers.setdefault(et, []).append(subscription)
        logger.debug(
            "Registered event subscriber %s for types: %s",
            handler.__name__,
            sorted(t.value for t in types),
        )


def unsubscribe(handler: EventHandler) -> None:
    """Remove every registration of a previously registered handler."""
    _subscribers[:] = [s for s in _subscribers if s.handler != handler]
    for et, subs in _type_subscribers.items():
        _type_subscribers[et] = [s for s in subs if s.handler != handler]


async def emit(event: SystemEvent) -> None:
    """Publish a SystemEvent to all subscribers.

    Events are placed on an async queue and processed by a background worker
    so the emitter is never blocked by slow subscribers.
    """
    global _queue
    if _queue is None:
        _queue = asyncio.Queue()
        _ensure_worker()

    await _queue.put(event)
    logger.debug("Event emitted: %s (request=%s)", event.event_type.value, event.request_id)


async def emit_nowait(event: SystemEvent) -> None:
    """Dispatch directly without queueing.

    Used by the Redis relay to replay events that originated in another process.
    """
    await _dispatch(event)


# ── Background worker ────────────────────────────────────────────────


def _ensure_worker() -> None:
    """Start the background event worker if not already running."""
    global _worker_task
    if _worker_task is None or _worker_task.done():
        _worker_task = asyncio.create_task(_event_worker())
        logger.info("Event worker started")


async def _event_worker() -> None:
    """Background task that drains the event queue and dispatches to subscribers."""
    if _queue is None:
        return

    while True:
        try:
            event = await _queue.get()
            await _dispatch(event)
            _queue.task_done()
        except asyncio.CancelledError:
            logger.info("Event worker shutting down")
            break
        except Exception:
            logger.exception("Error in event worker")


async def _dispatch(event: SystemEvent) -> None:
    """Dispatch a single event to all matching subscribers."""
    subscriptions: list[_Subscription] = list(_subscribers)
    subscriptions.extend(_type_subscribers.get(event.event_type, []))

    handlers = [s.handler for s in subscriptions if s.matches(event)]
    if not handlers:
        return

    # Run all handlers concurrently; isolate failures
    results = await asyncio.gather(
        *[_safe_call(handler, event) for handler in handlers],
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, Exception):
            logger.error("Event handler failed for %s: %s", event.event_type.value, result)


async def _safe_call(handler: EventHandler, event: SystemEvent) -> None:
    """Call a handler with error isolation."""
    try:
        await handler(event)
    except Exception:
        logger.exception("Handler %s failed for event %s", handler.__name__, event.event_type.value)
        raise


# ── Lifecycle ────────────────────────────────────────────────────────


async def start_event_system() -> None:
    """Initialize the event system. Call during FastAPI lifespan startup."""
    global _queue
    _queue = asyncio.Queue()
    _ensure_worker()
    logger.info(
        "Event system started with %d global + %d typed subscribers",
        len(_subscribers),
        sum(len(v) for v in _type_subscribers.values()),
    )


async def stop_event_system() -> None:
    """Gracefully stop the event system. Call during FastAPI lifespan shutdown."""
    global _worker_task, _queue

    if _queue is not None:
        # Drain remaining events
        await _queue.join()

    if _worker_task is not None and not _worker_task.done():
        _worker_task.cancel()
        try:
            await _worker_task
        except asyncio.CancelledError:
            pass

    _worker_task = None
    _queue = None
    logger.info("Event system stopped")
