"""Tests for the event bus, snapshot feeds and the Redis change relay."""

from __future__ import annotations

import json
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.realtime import events
from src.realtime.events import emit_nowait, subscribe, unsubscribe
from src.realtime.feed import SnapshotFeed, sse_message
from src.realtime.relay import ChangeRelay
from src.schemas.events import RELAY_SOURCE_MODULE, EventType, SystemEvent


@pytest.fixture(autouse=True)
def clean_bus():
    yield
    events._subscribers.clear()
    events._type_subscribers.clear()


def _event(event_type: EventType = EventType.REQUEST_SUBMITTED, **kwargs) -> SystemEvent:
    return SystemEvent(event_type=event_type, request_id=uuid.uuid4(), **kwargs)


# ── Event bus ────────────────────────────────────────────────────────


class TestEventBus:
    @pytest.mark.asyncio()
    async def test_typed_subscriber(self):
        received: list[SystemEvent] = []

        async def handler(event: SystemEvent) -> None:
            received.append(event)

        subscribe(handler, [EventType.REQUEST_FLAGGED])
        await emit_nowait(_event(EventType.REQUEST_SUBMITTED))
        await emit_nowait(_event(EventType.REQUEST_FLAGGED))

        assert [e.event_type for e in received] == [EventType.REQUEST_FLAGGED]

    @pytest.mark.asyncio()
    async def test_predicate_narrows_rows(self):
        me = uuid.uuid4()
        received: list[SystemEvent] = []

        async def handler(event: SystemEvent) -> None:
            received.append(event)

        subscribe(handler, predicate=lambda e: e.user_id == me)
        await emit_nowait(_event(user_id=uuid.uuid4()))
        await emit_nowait(_event(user_id=me))

        assert len(received) == 1
        assert received[0].user_id == me

    @pytest.mark.asyncio()
    async def test_unsubscribe_bound_method(self):
        class Listener:
            def __init__(self) -> None:
                self.count = 0

            async def on_event(self, event: SystemEvent) -> None:
                self.count += 1

        listener = Listener()
        subscribe(listener.on_event, [EventType.REQUEST_SUBMITTED])
        unsubscribe(listener.on_event)
        await emit_nowait(_event())

        assert listener.count == 0

    @pytest.mark.asyncio()
    async def test_failing_handler_isolated(self):
        received: list[SystemEvent] = []

        async def broken(event: SystemEvent) -> None:
            raise RuntimeError("boom")

        async def healthy(event: SystemEvent) -> None:
            received.append(event)

        subscribe(broken)
        subscribe(healthy)
        await emit_nowait(_event())

        assert len(received) == 1


# ── Snapshot feeds ───────────────────────────────────────────────────


class TestSnapshotFeed:
    @pytest.mark.asyncio()
    async def test_initial_snapshot_then_refetch_on_change(self):
        fetch = AsyncMock(side_effect=[["a"], ["a", "b"]])
        feed = SnapshotFeed(fetch)
        stream = feed.stream()

        assert await anext(stream) == ["a"]
        await emit_nowait(_event(EventType.REQUEST_SUBMITTED))
        assert await anext(stream) == ["a", "b"]
        await stream.aclose()

        assert fetch.await_count == 2
        assert not any(events._type_subscribers.values())

    @pytest.mark.asyncio()
    async def test_non_matching_event_ignored(self):
        owner = uuid.uuid4()
        fetch = AsyncMock(side_effect=[[1], [2]])
        feed = SnapshotFeed(fetch, predicate=lambda e: e.user_id == owner, poll_interval=0.05)
        stream = feed.stream()

        await anext(stream)
        await emit_nowait(_event(user_id=uuid.uuid4()))

        # Only the poll tick causes the second fetch
        assert await anext(stream) == [2]
        await stream.aclose()

    def test_sse_message_multiline(self):
        assert sse_message('{"a":\n1}') == 'event: snapshot\ndata: {"a":\ndata: 1}\n\n'

    def test_sse_message_empty(self):
        assert sse_message("", event="ping") == "event: ping\ndata: \n\n"


# ── Redis relay ──────────────────────────────────────────────────────


class TestChangeRelay:
    @pytest.mark.asyncio()
    async def test_publish_tags_origin(self):
        client = MagicMock()
        client.publish = AsyncMock()
        relay = ChangeRelay(client, "changes")
        event = _event()

        await relay.publish(event)

        channel, payload = client.publish.call_args.args
        assert channel == "changes"
        message = json.loads(payload)
        assert message["origin"] == relay.origin
        assert message["event"]["event_type"] == "request.submitted"

    @pytest.mark.asyncio()
    async def test_replayed_events_not_republished(self):
        client = MagicMock()
        client.publish = AsyncMock()
        relay = ChangeRelay(client, "changes")

        await relay.publish(_event(source_module=RELAY_SOURCE_MODULE))

        client.publish.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_publish_failure_logged(self):
        client = MagicMock()
        client.publish = AsyncMock(side_effect=RedisConnectionError("down"))
        relay = ChangeRelay(client, "changes")

        await relay.publish(_event())

    @pytest.mark.asyncio()
    async def test_foreign_message_replayed(self):
        relay = ChangeRelay(MagicMock(), "changes")
        event = _event(EventType.REQUEST_FLAGGED)
        raw = json.dumps({"origin": "other", "event": event.model_dump(mode="json")})

        with patch("src.realtime.relay.emit_nowait", new_callable=AsyncMock) as replay:
            await relay.handle_message(raw)

        replayed = replay.call_args.args[0]
        assert replayed.id == event.id
        assert replayed.source_module == RELAY_SOURCE_MODULE

    @pytest.mark.asyncio()
    async def test_own_message_ignored(self):
        relay = ChangeRelay(MagicMock(), "changes")
        raw = json.dumps({"origin": relay.origin, "event": _event().model_dump(mode="json")})

        with patch("src.realtime.relay.emit_nowait", new_callable=AsyncMock) as replay:
            await relay.handle_message(raw)

        replay.assert_not_awaited()

    @pytest.mark.asyncio()
    @pytest.mark.parametrize("raw", ["not json", '{"origin": "x"}', '{"origin": "x", "event": {"event_type": "?"}}'])
    async def test_malformed_dropped(self, raw):
        relay = ChangeRelay(MagicMock(), "changes")
        with patch("src.realtime.relay.emit_nowait", new_callable=AsyncMock) as replay:
            await relay.handle_message(raw)
        replay.assert_not_awaited()
