"""Audit log subscriber: persists every SystemEvent to the audit_log table.

Registered as a global subscriber. Events replayed from another process by
the Redis relay are skipped, since the emitting process already wrote them.

Never raises; failures are logged and never reach the event system.
"""

from __future__ import annotations

import logging
from typing import Any

from src.db.engine import async_session_factory
from src.models.audit import AuditLog
from src.schemas.events import RELAY_SOURCE_MODULE, SystemEvent

logger = logging.getLogger(__name__)


def _audit_data(event: SystemEvent) -> dict[str, Any]:
    data = dict(event.data)
    if event.user_id is not None:
        data.setdefault("user_id", str(event.user_id))
    if event.source_module:
        data.setdefault("source", event.source_module)
    return data


async def audit_on_event(event: SystemEvent) -> None:
    """Write a SystemEvent to the audit_log table."""
    if event.source_module == RELAY_SOURCE_MODULE:
        return

    try:
        async with async_session_factory() as db:
            db.add(AuditLog(
                event_type=event.event_type.value,
                request_id=event.request_id,
                actor_id=event.actor_id,
                actor_role=event.actor_role,
                data=_audit_data(event),
            ))
            await db.commit()
    except Exception:
        logger.exception(
            "Failed to persist audit event: %s (request=%s)",
            event.event_type.value,
            event.request_id,
        )
