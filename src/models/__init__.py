"""SQLAlchemy ORM models for the course request tracker.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from src.models.audit import AuditLog
from src.models.auth_session import AuthSession
from src.models.base import Base
from src.models.course_request import CourseRequest
from src.models.enums import (
    ITEMIZED_TYPES,
    ItemAction,
    ItemStatus,
    RequestStatus,
    RequestType,
    UserRole,
)
from src.models.profile import Profile
from src.models.request_item import RequestItem

__all__ = [
    # Base
    "Base",
    # Models
    "CourseRequest",
    "RequestItem",
    "Profile",
    "AuthSession",
    "AuditLog",
    # Enums
    "RequestType",
    "RequestStatus",
    "ItemStatus",
    "ItemAction",
    "UserRole",
    "ITEMIZED_TYPES",
]
