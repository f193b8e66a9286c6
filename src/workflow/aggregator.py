"""Decision aggregator: per-item staff decisions -> request outcome.

Pure Python, no I/O. Implements:
- Completeness: every item resolves a decision (a change item inherits its
  group's decision unless decided individually)
- Group consistency: both halves of a change pair share one status
- Rejection remarks: "<reason> - <remarks>", either one alone, never neither
- Aggregate status: all approved / all rejected / partially approved

Legacy requests with no items are decided by one request-level decision.
Validation order: targets, structure, completeness, group consistency,
rejection remarks. Nothing is written until all of them pass.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from src.models.enums import ItemAction, ItemStatus, RequestStatus, RequestType
from src.schemas.requests import Decision
from src.workflow.errors import (
    IncompleteDecisions,
    InconsistentGroupDecision,
    InvalidItemGroup,
    MissingRejectionReason,
    UnknownDecisionTarget,
)


class DecidableItem(Protocol):
    id: uuid.UUID
    group_id: uuid.UUID | None
    action: str


@dataclass(frozen=True)
class ItemOutcome:
    item_id: uuid.UUID
    status: ItemStatus
    remarks: str | None = None


@dataclass(frozen=True)
class AggregateOutcome:
    status: RequestStatus
    remarks: str | None = None
    items: tuple[ItemOutcome, ...] = field(default_factory=tuple)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def compose_remarks(reason: str | None, remarks: str | None) -> str | None:
    """Join a predefined reason and free-text remarks into one stored remark."""
    reason, remarks = _clean(reason), _clean(remarks)
    if reason and remarks:
        return f"{reason} - {remarks}"
    return reason or remarks


def derive_status(statuses: Sequence[ItemStatus]) -> RequestStatus:
    """All approved -> approved, all rejected -> rejected, else partially approved."""
    distinct = set(statuses)
    if distinct == {ItemStatus.APPROVED}:
        return RequestStatus.APPROVED
    if distinct == {ItemStatus.REJECTED}:
        return RequestStatus.REJECTED
    return RequestStatus.PARTIALLY_APPROVED


def _rejection_remark(decision: Decision, target: str, request_id: uuid.UUID | None) -> str:
    remark = compose_remarks(decision.reason, decision.remarks)
    if remark is None:
        raise MissingRejectionReason(target, request_id)
    return remark


# ── Legacy (no items) ────────────────────────────────────────────────


def _aggregate_whole_request(
    decisions: Mapping[str, Decision],
    request_decision: Decision | None,
    comment: str | None,
    request_id: uuid.UUID | None,
) -> AggregateOutcome:
    if decisions:
        raise UnknownDecisionTarget(sorted(decisions), request_id)
    if request_decision is None:
        raise IncompleteDecisions(["request"], request_id)

    if request_decision.status == ItemStatus.REJECTED.value:
        return AggregateOutcome(
            status=RequestStatus.REJECTED,
            remarks=_rejection_remark(request_decision, "request", request_id),
        )
    return AggregateOutcome(
        status=RequestStatus.APPROVED,
        remarks=_clean(request_decision.remarks) or comment,
    )


# ── Change groups ────────────────────────────────────────────────────


def _check_change_groups(items: Sequence[DecidableItem], request_id: uuid.UUID | None) -> None:
    groups: dict[uuid.UUID, list[str]] = {}
    for item in items:
        if item.group_id is None:
            msg = f"Change item {item.id} has no group"
            raise InvalidItemGroup(msg, request_id)
        groups.setdefault(item.group_id, []).append(item.action)

    for group_id, actions in groups.items():
        if sorted(actions) != sorted([ItemAction.ADD.value, ItemAction.DROP.value]):
            msg = f"Change group {group_id} must hold exactly one add and one drop item, got {actions}"
            raise InvalidItemGroup(msg, request_id)


# ── Entry point ──────────────────────────────────────────────────────


def aggregate(
    request_type: RequestType | str,
    items: Sequence[DecidableItem],
    decisions: Mapping[str, Decision],
    request_decision: Decision | None = None,
    comment: str | None = None,
    request_id: uuid.UUID | None = None,
) -> AggregateOutcome:
    """Validate staff decisions and compute the request outcome.

    Args:
        request_type: Type of the request being finalized.
        items: The request's items (ORM rows or anything with id/group_id/action).
        decisions: Decisions keyed by item id or, for change requests, group id.
            An item-id key takes precedence over its group's key.
        request_decision: Whole-request decision, used only when there are no items.
        comment: Optional request-level comment stored as the request remark.
        request_id: Used only to label raised errors.

    Returns:
        AggregateOutcome with the request status/remarks and one ItemOutcome per item.

    Raises:
        DecisionError: Any validation failure; see module docstring for order.
    """
    request_type = RequestType(request_type)
    comment = _clean(comment)

    if not items:
        return _aggregate_whole_request(decisions, request_decision, comment, request_id)

    grouped = request_type is RequestType.CHANGE
    item_keys = {str(item.id) for item in items}
    group_keys = {str(item.group_id) for item in items if item.group_id is not None} if grouped else set()

    unknown = sorted(key for key in decisions if key not in item_keys and key not in group_keys)
    if unknown:
        raise UnknownDecisionTarget(unknown, request_id)

    if grouped:
        _check_change_groups(items, request_id)

    # Completeness
    resolved: list[tuple[DecidableItem, Decision, str]] = []
    missing: list[str] = []
    for item in items:
        decision = decisions.get(str(item.id))
        target = str(item.id)
        if decision is None and grouped:
            target = str(item.group_id)
            decision = decisions.get(target)
        if decision is None:
            if target not in missing:
                missing.append(target)
            continue
        resolved.append((item, decision, target))
    if missing:
        raise IncompleteDecisions(missing, request_id)

    # Group consistency
    if grouped:
        group_statuses: dict[uuid.UUID, set[str]] = {}
        for item, decision, _ in resolved:
            group_statuses.setdefault(item.group_id, set()).add(decision.status)  # type: ignore[arg-type]
        for group_id, statuses in group_statuses.items():
            if len(statuses) > 1:
                raise InconsistentGroupDecision(str(group_id), request_id)

    # Rejection remarks
    outcomes: list[ItemOutcome] = []
    for item, decision, target in resolved:
        status = ItemStatus(decision.status)
        remarks = None
        if status is ItemStatus.REJECTED:
            remarks = _rejection_remark(decision, target, request_id)
        outcomes.append(ItemOutcome(item_id=item.id, status=status, remarks=remarks))

    return AggregateOutcome(
        status=derive_status([o.status for o in outcomes]),
        remarks=comment,
        items=tuple(outcomes),
    )
