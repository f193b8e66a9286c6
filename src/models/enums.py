"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization; columns store the plain value.
"""

from __future__ import annotations

from enum import Enum


class RequestType(str, Enum):
    """Kind of course-change request a student files."""

    ADD = "add"
    ADD_WITH_EXCEPTION = "add_with_exception"
    CHANGE = "change"
    DROP = "drop"
    CHANGE_YEAR_LEVEL = "change_year_level"  # legacy, free-text payload, no items


class RequestStatus(str, Enum):
    """Request lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "approved"
    REJECTED = "rejected"
    PARTIALLY_APPROVED = "partially_approved"


class ItemStatus(str, Enum):
    """Per-course decision state."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ItemAction(str, Enum):
    """What a request item does to the student's enrollment."""

    ADD = "add"
    DROP = "drop"


class UserRole(str, Enum):
    """Profile role; decides which routes a user may call."""

    STUDENT = "student"
    STAFF = "staff"


# Request types that carry per-course items and appear in the staff queue
ITEMIZED_TYPES: frozenset[RequestType] = frozenset({
    RequestType.ADD,
    RequestType.ADD_WITH_EXCEPTION,
    RequestType.CHANGE,
    RequestType.DROP,
})
