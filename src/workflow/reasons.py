"""Predefined rejection reasons shown to staff, per request type."""

from __future__ import annotations

from src.models.enums import RequestType

_ADD_REASONS: tuple[str, ...] = (
    "Exceeds unit load",
    "Course full",
    "Prerequisite not met",
    "Grade pending",
    "Not in the curriculum",
    "Deadline passed",
    "Schedule conflict",
    "Scholarship/financial restriction",
    "No approval",
    "Duplicate enrollment",
)

REJECT_REASONS: dict[RequestType, tuple[str, ...]] = {
    RequestType.ADD: _ADD_REASONS,
    RequestType.ADD_WITH_EXCEPTION: _ADD_REASONS,
    RequestType.CHANGE: (
        "Section full",
        "Schedule conflict",
        "Exceeds unit load",
        "Part of a block section",
        "Not offered this term",
        "Deadline passed",
        "No approval",
        "Curriculum restriction",
        "Overload/underload issue",
        "Not applicable",
    ),
    RequestType.DROP: (
        "Below minimum load",
        "Required for graduation",
        "Scholarship/financial restriction",
        "No approval",
        "Part of a block section",
        "Drop limit exceeded",
        "Policy restriction",
        "Deadline passed",
        "Not applicable",
    ),
    RequestType.CHANGE_YEAR_LEVEL: (),
}


def reasons_for(request_type: RequestType | str) -> tuple[str, ...]:
    """Return the reason list for a request type (empty for unknown types)."""
    try:
        return REJECT_REASONS[RequestType(request_type)]
    except ValueError:
        return ()
