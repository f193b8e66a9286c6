"""Exception hierarchy for request lifecycle operations.

Every error is scoped to one request operation; none is process-fatal.
Each class carries a stable ``code`` that the HTTP layer exposes verbatim.
"""

from __future__ import annotations

from typing import Any


class RequestWorkflowError(Exception):
    """Base class for all lifecycle, guard and aggregation failures."""

    code = "request_error"

    def __init__(self, message: str, request_id: Any = None) -> None:
        super().__init__(message)
        self.request_id = request_id


class DuplicateActiveRequest(RequestWorkflowError):
    """The user already has a pending or processing request of this type."""

    code = "duplicate_active_request"

    def __init__(self, request_type: str, request_id: Any = None) -> None:
        super().__init__(
            f"An active {request_type} request already exists; wait for it to complete or cancel it",
            request_id,
        )
        self.request_type = request_type


class InvalidStateTransition(RequestWorkflowError):
    """The operation is not allowed from the request's current status."""

    code = "invalid_state_transition"

    def __init__(self, operation: str, current_status: str, request_id: Any = None) -> None:
        super().__init__(f"Cannot {operation} a request that is {current_status}", request_id)
        self.operation = operation
        self.current_status = current_status


class Forbidden(RequestWorkflowError):
    """The actor lacks permission for this request."""

    code = "forbidden"


class RequestNotFound(RequestWorkflowError):
    """No request with the given id exists (or it was cancelled)."""

    code = "request_not_found"

    def __init__(self, request_id: Any) -> None:
        super().__init__(f"Request {request_id} not found", request_id)


class StoreError(RequestWorkflowError):
    """The database call behind an operation failed. Never retried by the core."""

    code = "store_error"

    def __init__(self, operation: str, request_id: Any = None) -> None:
        target = f" (request={request_id})" if request_id is not None else ""
        super().__init__(f"Store failure during {operation}{target}", request_id)
        self.operation = operation


# ── Decision aggregation ─────────────────────────────────────────────


class DecisionError(RequestWorkflowError):
    """Invalid decision input, detected before anything is written."""

    code = "invalid_decisions"


class IncompleteDecisions(DecisionError):
    """Some item (or change group) has no decision."""

    code = "incomplete_decisions"

    def __init__(self, missing: list[str], request_id: Any = None) -> None:
        super().__init__(f"Decide approve/reject for every course before finalizing: {missing}", request_id)
        self.missing = missing


class InconsistentGroupDecision(DecisionError):
    """The drop and add halves of a change pair resolved to different statuses."""

    code = "inconsistent_group_decision"

    def __init__(self, group_id: str, request_id: Any = None) -> None:
        super().__init__(f"Change pair {group_id} must be approved or rejected together", request_id)
        self.group_id = group_id


class MissingRejectionReason(DecisionError):
    """A rejection carries neither a predefined reason nor remarks."""

    code = "missing_rejection_reason"

    def __init__(self, target: str, request_id: Any = None) -> None:
        super().__init__(f"Provide a reason or remarks for rejected {target}", request_id)
        self.target = target


class UnknownDecisionTarget(DecisionError):
    """A decision references an id that is neither an item nor a group of the request."""

    code = "unknown_decision_target"

    def __init__(self, targets: list[str], request_id: Any = None) -> None:
        super().__init__(f"Decisions reference unknown items or groups: {targets}", request_id)
        self.targets = targets


class InvalidItemGroup(DecisionError):
    """A change request's items do not form one drop/add pair per group."""

    code = "invalid_item_group"
