"""Request lifecycle states and transition map.

pending -> processing -> {approved | rejected | partially_approved}.
Cancellation deletes a pending request outright, so it has no target state.
Staff may re-finalize a request that is already terminal.
"""

from __future__ import annotations

from src.models.enums import RequestStatus

# Transition map: {current_status: {trigger_name: next_status}}
TRANSITIONS: dict[RequestStatus, dict[str, RequestStatus]] = {
    RequestStatus.PENDING: {
        "start_processing": RequestStatus.PROCESSING,
    },
    RequestStatus.PROCESSING: {
        "approve": RequestStatus.APPROVED,
        "reject": RequestStatus.REJECTED,
        "partially_approve": RequestStatus.PARTIALLY_APPROVED,
    },
    RequestStatus.APPROVED: {},
    RequestStatus.REJECTED: {},
    RequestStatus.PARTIALLY_APPROVED: {},
}

# Aggregated status -> finalize trigger
FINALIZE_TRIGGERS: dict[RequestStatus, str] = {
    RequestStatus.APPROVED: "approve",
    RequestStatus.REJECTED: "reject",
    RequestStatus.PARTIALLY_APPROVED: "partially_approve",
}

# Re-finalization: a terminal request can be decided again with any outcome
REOPEN_TRANSITIONS: dict[str, RequestStatus] = {
    trigger: status for status, trigger in FINALIZE_TRIGGERS.items()
}

# "Active" for the duplicate guard and the staff queue
IN_FLIGHT_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.PENDING,
    RequestStatus.PROCESSING,
})

TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset(
    s for s, targets in TRANSITIONS.items() if not targets
)

# Only a pending request may be edited or cancelled by its owner
EDITABLE_STATUSES: frozenset[RequestStatus] = frozenset({RequestStatus.PENDING})
