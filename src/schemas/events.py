"""SystemEvent schema: the core event type that flows through the entire system.

Every state change emits a SystemEvent. Subscribers (AuditLogger, snapshot
feeds, Redis relay) consume these events asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Request lifecycle (row changes on `requests` / `request_items`)
    REQUEST_SUBMITTED = "request.submitted"
    REQUEST_UPDATED = "request.updated"
    REQUEST_CANCELLED = "request.cancelled"
    REQUEST_STATUS_CHANGED = "request.status_changed"
    REQUEST_FINALIZED = "request.finalized"
    REQUEST_FLAGGED = "request.flagged"

    # Duplicate guard
    SUBMISSION_SKIPPED = "submission.skipped"

    # Session relay
    SESSION_CREATED = "session.created"
    SESSION_ROTATED = "session.rotated"
    SESSION_REVOKED = "session.revoked"
    SESSIONS_REVOKED_ALL = "session.revoked_all"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"
    SYSTEM_ERROR = "system.error"


# Events that mean "a row in the requests table changed"; feeds re-fetch on these
ROW_CHANGE_EVENTS: frozenset[EventType] = frozenset({
    EventType.REQUEST_SUBMITTED,
    EventType.REQUEST_UPDATED,
    EventType.REQUEST_CANCELLED,
    EventType.REQUEST_STATUS_CHANGED,
    EventType.REQUEST_FINALIZED,
    EventType.REQUEST_FLAGGED,
})


# source_module stamped on events replayed from another process
RELAY_SOURCE_MODULE = "realtime.relay"


class SystemEvent(BaseModel):
    """Core event that flows through the entire system.

    Immutable once created. Consumed by:
    - AuditLogger → writes to audit_log table
    - SnapshotFeed → re-fetches queue/history/student listings
    - ChangeRelay → forwards row changes to other processes via Redis
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional; not every event concerns a request)
    request_id: uuid.UUID | None = None
    user_id: uuid.UUID | None = None
    actor_id: str | None = None
    actor_role: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
