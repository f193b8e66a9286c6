"""CourseRequest model: one student submission (add, drop, change, ...)."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import Base, TimestampMixin
from src.models.enums import RequestStatus

if TYPE_CHECKING:
    from src.models.request_item import RequestItem


class CourseRequest(TimestampMixin, Base):
    """A student's course-change application and its review state."""

    __tablename__ = "requests"

    # Ownership
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    # Classification and lifecycle
    request_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(30), default=RequestStatus.PENDING.value, nullable=False, index=True
    )
    request_data: Mapped[dict[str, Any]] = mapped_column(
        JSONB, nullable=False, comment="Payload snapshot at submission time"
    )
    remarks: Mapped[str | None] = mapped_column(Text)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_flagged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Student identity snapshot from the submission form
    id_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    college: Mapped[str] = mapped_column(String(200), nullable=False)
    program: Mapped[str] = mapped_column(String(300), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    middle_name: Mapped[str | None] = mapped_column(String(100))
    suffix: Mapped[str | None] = mapped_column(String(20))
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(30), nullable=False)
    facebook: Mapped[str | None] = mapped_column(String(255))

    # Relationships
    items: Mapped[list[RequestItem]] = relationship(
        "RequestItem",
        back_populates="request",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="RequestItem.position",
    )

    def __repr__(self) -> str:
        return f"<CourseRequest id={self.id} type={self.request_type} status={self.status}>"
