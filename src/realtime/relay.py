"""Redis relay: shares row-change events between API processes.

Local row-change events are published to a Redis channel tagged with this
process's origin id. Messages from other origins are re-dispatched on the
local bus so their feeds re-fetch too. Replayed events carry
``source_module="realtime.relay"`` and are never published again.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from typing import Any

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from src.realtime.events import emit_nowait, subscribe, unsubscribe
from src.schemas.events import RELAY_SOURCE_MODULE, ROW_CHANGE_EVENTS, SystemEvent

logger = logging.getLogger(__name__)


class ChangeRelay:
    """Bridges the in-process event bus and a Redis pub/sub channel."""

    def __init__(self, client: aioredis.Redis, channel: str) -> None:
        self._redis = client
        self.channel = channel
        self.origin = uuid.uuid4().hex
        self._pubsub: Any = None
        self._listener: asyncio.Task[None] | None = None

    # ── Outbound ─────────────────────────────────────────────────────

    async def publish(self, event: SystemEvent) -> None:
        """Forward a local row-change event to the channel."""
        if event.source_module == RELAY_SOURCE_MODULE:
            return
        payload = json.dumps({"origin": self.origin, "event": event.model_dump(mode="json")})
        try:
            await self._redis.publish(self.channel, payload)
        except RedisError:
            logger.exception("Relay publish failed: %s (request=%s)", event.event_type.value, event.request_id)

    # ── Inbound ──────────────────────────────────────────────────────

    async def handle_message(self, raw: str | bytes) -> None:
        """Re-dispatch an event published by another process."""
        try:
            message = json.loads(raw)
            if message.get("origin") == self.origin:
                return
            event = SystemEvent.model_validate(message["event"])
        except (ValueError, KeyError, TypeError, ValidationError):
            logger.warning("Relay dropped malformed message on %s", self.channel)
            return

        replay = event.model_copy(update={"source_module": RELAY_SOURCE_MODULE})
        await emit_nowait(replay)

    async def _listen(self) -> None:
        async for message in self._pubsub.listen():
            if message.get("type") != "message":
                continue
            await self.handle_message(message["data"])

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self.channel)
        subscribe(self.publish, ROW_CHANGE_EVENTS)
        self._listener = asyncio.create_task(self._listen())
        logger.info("Change relay started on channel %s (origin=%s)", self.channel, self.origin)

    async def stop(self) -> None:
        unsubscribe(self.publish)
        if self._listener is not None and not self._listener.done():
            self._listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener
        self._listener = None
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
            self._pubsub = None
        logger.info("Change relay stopped")
