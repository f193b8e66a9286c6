"""Tests for the decision aggregator.

Covers:
- Aggregate status derivation (all approved / all rejected / mixed)
- Change-pair group consistency and group-keyed decisions
- Rejection remarks composition and trimming
- Completeness, unknown targets, malformed change groups
- Legacy requests without items
- Idempotence of repeated aggregation
"""

from __future__ import annotations

import uuid
from types import SimpleNamespace

import pytest

from src.models.enums import ItemStatus, RequestStatus, RequestType
from src.schemas.requests import Decision
from src.workflow.aggregator import aggregate, compose_remarks, derive_status
from src.workflow.errors import (
    IncompleteDecisions,
    InconsistentGroupDecision,
    InvalidItemGroup,
    MissingRejectionReason,
    UnknownDecisionTarget,
)

# ── Helpers ──────────────────────────────────────────────────────────


def _make_item(action: str = "add", group_id: uuid.UUID | None = None) -> SimpleNamespace:
    return SimpleNamespace(id=uuid.uuid4(), group_id=group_id, action=action)


def _make_pair() -> tuple[uuid.UUID, list[SimpleNamespace]]:
    group_id = uuid.uuid4()
    return group_id, [_make_item("drop", group_id), _make_item("add", group_id)]


def _approve(remarks: str | None = None) -> Decision:
    return Decision(status="approved", remarks=remarks)


def _reject(reason: str | None = None, remarks: str | None = None) -> Decision:
    return Decision(status="rejected", reason=reason, remarks=remarks)


# ── Status derivation ────────────────────────────────────────────────


class TestDeriveStatus:
    def test_all_approved(self):
        assert derive_status([ItemStatus.APPROVED, ItemStatus.APPROVED]) is RequestStatus.APPROVED

    def test_all_rejected(self):
        assert derive_status([ItemStatus.REJECTED]) is RequestStatus.REJECTED

    def test_mixed(self):
        statuses = [ItemStatus.APPROVED, ItemStatus.REJECTED, ItemStatus.APPROVED]
        assert derive_status(statuses) is RequestStatus.PARTIALLY_APPROVED


class TestAggregateStatus:
    def test_add_request_all_approved(self):
        items = [_make_item(), _make_item()]
        decisions = {str(i.id): _approve() for i in items}

        outcome = aggregate(RequestType.ADD, items, decisions)

        assert outcome.status is RequestStatus.APPROVED
        assert [o.status for o in outcome.items] == [ItemStatus.APPROVED, ItemStatus.APPROVED]
        assert all(o.remarks is None for o in outcome.items)

    def test_drop_request_all_rejected(self):
        items = [_make_item("drop"), _make_item("drop")]
        decisions = {str(i.id): _reject("Below minimum load") for i in items}

        outcome = aggregate(RequestType.DROP, items, decisions)

        assert outcome.status is RequestStatus.REJECTED

    def test_mixed_decisions_partially_approved(self):
        a, b = _make_item(), _make_item()
        decisions = {str(a.id): _approve(), str(b.id): _reject("Course full")}

        outcome = aggregate(RequestType.ADD_WITH_EXCEPTION, [a, b], decisions)

        assert outcome.status is RequestStatus.PARTIALLY_APPROVED
        by_id = {o.item_id: o for o in outcome.items}
        assert by_id[a.id].status is ItemStatus.APPROVED
        assert by_id[b.id].remarks == "Course full"

    def test_request_comment_becomes_remarks(self):
        item = _make_item()
        outcome = aggregate(RequestType.ADD, [item], {str(item.id): _approve()}, comment="  see dean  ")
        assert outcome.remarks == "see dean"

    def test_blank_comment_is_none(self):
        item = _make_item()
        outcome = aggregate(RequestType.ADD, [item], {str(item.id): _approve()}, comment="   ")
        assert outcome.remarks is None

    def test_approved_item_drops_remarks(self):
        item = _make_item()
        outcome = aggregate(RequestType.ADD, [item], {str(item.id): _approve("fine")})
        assert outcome.items[0].remarks is None


# ── Change groups ────────────────────────────────────────────────────


class TestChangeGroups:
    def test_group_keyed_decision_applies_to_both_items(self):
        group_id, items = _make_pair()

        outcome = aggregate(RequestType.CHANGE, items, {str(group_id): _approve()})

        assert outcome.status is RequestStatus.APPROVED
        assert len(outcome.items) == 2

    def test_two_groups_mixed(self):
        g1, pair1 = _make_pair()
        g2, pair2 = _make_pair()
        decisions = {str(g1): _approve(), str(g2): _reject("Section full", "no seats")}

        outcome = aggregate(RequestType.CHANGE, pair1 + pair2, decisions)

        assert outcome.status is RequestStatus.PARTIALLY_APPROVED
        rejected = [o for o in outcome.items if o.status is ItemStatus.REJECTED]
        assert len(rejected) == 2
        assert all(o.remarks == "Section full - no seats" for o in rejected)

    def test_inconsistent_item_decisions_rejected(self):
        group_id, (drop, add) = _make_pair()
        decisions = {str(drop.id): _approve(), str(add.id): _reject("Schedule conflict")}

        with pytest.raises(InconsistentGroupDecision) as exc_info:
            aggregate(RequestType.CHANGE, [drop, add], decisions)
        assert exc_info.value.group_id == str(group_id)

    def test_item_key_overrides_group_key(self):
        group_id, (drop, add) = _make_pair()
        decisions = {str(group_id): _approve(), str(add.id): _reject("Section full")}

        with pytest.raises(InconsistentGroupDecision):
            aggregate(RequestType.CHANGE, [drop, add], decisions)

    def test_inconsistency_checked_before_missing_reason(self):
        _, (drop, add) = _make_pair()
        decisions = {str(drop.id): _approve(), str(add.id): _reject()}

        with pytest.raises(InconsistentGroupDecision):
            aggregate(RequestType.CHANGE, [drop, add], decisions)

    def test_change_item_without_group_is_invalid(self):
        items = [_make_item("drop"), _make_item("add")]
        decisions = {str(i.id): _approve() for i in items}

        with pytest.raises(InvalidItemGroup):
            aggregate(RequestType.CHANGE, items, decisions)

    def test_group_with_two_adds_is_invalid(self):
        group_id = uuid.uuid4()
        items = [_make_item("add", group_id), _make_item("add", group_id)]

        with pytest.raises(InvalidItemGroup):
            aggregate(RequestType.CHANGE, items, {str(group_id): _approve()})

    def test_group_key_not_accepted_for_add_requests(self):
        group_id = uuid.uuid4()
        item = _make_item("add", group_id)

        with pytest.raises(UnknownDecisionTarget):
            aggregate(RequestType.ADD, [item], {str(group_id): _approve()})


# ── Rejection remarks ────────────────────────────────────────────────


class TestComposeRemarks:
    def test_reason_and_remarks(self):
        assert compose_remarks("Course full", "try next term") == "Course full - try next term"

    def test_reason_only(self):
        assert compose_remarks("Course full", None) == "Course full"

    def test_remarks_only(self):
        assert compose_remarks(None, "talk to adviser") == "talk to adviser"

    def test_whitespace_trimmed(self):
        assert compose_remarks("  Course full ", "  ") == "Course full"

    def test_neither(self):
        assert compose_remarks("", "   ") is None


class TestMissingRejectionReason:
    def test_rejection_without_reason_or_remarks(self):
        item = _make_item()
        with pytest.raises(MissingRejectionReason) as exc_info:
            aggregate(RequestType.ADD, [item], {str(item.id): _reject(" ", None)})
        assert exc_info.value.target == str(item.id)

    def test_group_rejection_without_reason_names_group(self):
        group_id, items = _make_pair()
        with pytest.raises(MissingRejectionReason) as exc_info:
            aggregate(RequestType.CHANGE, items, {str(group_id): _reject()})
        assert exc_info.value.target == str(group_id)


# ── Completeness and targets ─────────────────────────────────────────


class TestCompleteness:
    def test_missing_item_decision(self):
        a, b = _make_item(), _make_item()
        with pytest.raises(IncompleteDecisions) as exc_info:
            aggregate(RequestType.ADD, [a, b], {str(a.id): _approve()})
        assert exc_info.value.missing == [str(b.id)]

    def test_missing_group_reported_once(self):
        g1, pair1 = _make_pair()
        g2, pair2 = _make_pair()
        with pytest.raises(IncompleteDecisions) as exc_info:
            aggregate(RequestType.CHANGE, pair1 + pair2, {str(g1): _approve()})
        assert exc_info.value.missing == [str(g2)]

    def test_unknown_target(self):
        item = _make_item()
        stray = str(uuid.uuid4())
        decisions = {str(item.id): _approve(), stray: _approve()}

        with pytest.raises(UnknownDecisionTarget) as exc_info:
            aggregate(RequestType.ADD, [item], decisions)
        assert exc_info.value.targets == [stray]

    def test_unknown_target_checked_before_completeness(self):
        a, b = _make_item(), _make_item()
        with pytest.raises(UnknownDecisionTarget):
            aggregate(RequestType.ADD, [a, b], {"not-an-id": _approve()})


# ── Legacy requests (no items) ───────────────────────────────────────


class TestLegacyRequests:
    def test_request_decision_approves(self):
        outcome = aggregate(RequestType.CHANGE_YEAR_LEVEL, [], {}, request_decision=_approve("ok"))
        assert outcome.status is RequestStatus.APPROVED
        assert outcome.remarks == "ok"
        assert outcome.items == ()

    def test_approved_falls_back_to_comment(self):
        outcome = aggregate(RequestType.CHANGE_YEAR_LEVEL, [], {}, request_decision=_approve(), comment="done")
        assert outcome.remarks == "done"

    def test_request_decision_rejects_with_composed_remark(self):
        outcome = aggregate(
            RequestType.CHANGE_YEAR_LEVEL,
            [],
            {},
            request_decision=_reject("No approval", "missing form"),
        )
        assert outcome.status is RequestStatus.REJECTED
        assert outcome.remarks == "No approval - missing form"

    def test_missing_request_decision(self):
        with pytest.raises(IncompleteDecisions):
            aggregate(RequestType.CHANGE_YEAR_LEVEL, [], {})

    def test_rejection_needs_reason(self):
        with pytest.raises(MissingRejectionReason):
            aggregate(RequestType.CHANGE_YEAR_LEVEL, [], {}, request_decision=_reject())

    def test_item_decisions_rejected(self):
        with pytest.raises(UnknownDecisionTarget):
            aggregate(
                RequestType.CHANGE_YEAR_LEVEL,
                [],
                {str(uuid.uuid4()): _approve()},
                request_decision=_approve(),
            )


# ── Idempotence ──────────────────────────────────────────────────────


class TestIdempotence:
    def test_same_decisions_same_outcome(self):
        g1, pair = _make_pair()
        decisions = {str(g1): _reject("Section full", "x")}

        first = aggregate(RequestType.CHANGE, pair, decisions, comment="c")
        second = aggregate(RequestType.CHANGE, pair, decisions, comment="c")

        assert first == second
        assert first.items[0].remarks == "Section full - x"
