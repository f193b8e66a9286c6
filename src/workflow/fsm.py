"""Finite state machine for request status control.

Every status write in the lifecycle engine goes through this class, so an
illegal move (e.g. finalizing a pending request) is rejected in one place.
"""

from __future__ import annotations

import logging
import uuid

from src.models.enums import RequestStatus
from src.realtime.events import emit
from src.schemas.events import EventType, SystemEvent
from src.workflow.errors import InvalidStateTransition
from src.workflow.states import (
    REOPEN_TRANSITIONS,
    TERMINAL_STATUSES,
    TRANSITIONS,
)

logger = logging.getLogger(__name__)


class RequestStateMachine:
    """Manages status transitions for a single request."""

    def __init__(self, request_id: uuid.UUID, status: RequestStatus | str) -> None:
        self.request_id = request_id
        self.current_status = RequestStatus(status)

    def _targets(self, reopen: bool) -> dict[str, RequestStatus]:
        targets = dict(TRANSITIONS.get(self.current_status, {}))
        if reopen and self.current_status in TERMINAL_STATUSES:
            targets.update(REOPEN_TRANSITIONS)
        return targets

    def next_status(self, trigger: str, reopen: bool = False) -> RequestStatus:
        """Resolve a trigger without moving.

        Raises:
            InvalidStateTransition: If the trigger is not valid from the current status.
        """
        targets = self._targets(reopen)
        if trigger not in targets:
            raise InvalidStateTransition(trigger.replace("_", " "), self.current_status.value, self.request_id)
        return targets[trigger]

    async def transition(
        self,
        trigger: str,
        reopen: bool = False,
        actor_id: str | None = None,
        user_id: uuid.UUID | None = None,
    ) -> RequestStatus:
        """Execute a status transition.

        Args:
            trigger: e.g. ``start_processing`` or ``partially_approve``.
            reopen: Allow finalize triggers from a terminal status.
            actor_id: Staff member performing the move, recorded on the event.
            user_id: Owner of the request, so student feeds can match the event.

        Returns:
            The new status after transition.

        Raises:
            InvalidStateTransition: If the trigger is not valid from the current status.
        """
        old_status = self.current_status
        self.current_status = self.next_status(trigger, reopen)

        logger.info(
            "Status transition: %s --%s--> %s (request=%s)",
            old_status.value,
            trigger,
            self.current_status.value,
            self.request_id,
        )

        await emit(SystemEvent(
            event_type=EventType.REQUEST_STATUS_CHANGED,
            request_id=self.request_id,
            user_id=user_id,
            actor_id=actor_id,
            actor_role="staff" if actor_id else None,
            data={
                "from_status": old_status.value,
                "to_status": self.current_status.value,
                "trigger": trigger,
            },
            source_module="workflow.fsm",
        ))

        return self.current_status

    @property
    def is_terminal(self) -> bool:
        return self.current_status in TERMINAL_STATUSES
