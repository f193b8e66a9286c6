"""RequestItem model: one course line within a request, decided individually or per group."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import Base, TimestampMixin
from src.models.enums import ItemStatus

if TYPE_CHECKING:
    from src.models.course_request import CourseRequest


class RequestItem(TimestampMixin, Base):
    """A single add or drop course line."""

    __tablename__ = "request_items"

    # Foreign keys
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    group_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), index=True, comment="Shared by the drop/add pair of a change request"
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Course line
    action: Mapped[str] = mapped_column(String(10), nullable=False)
    course_code: Mapped[str] = mapped_column(String(50), nullable=False)
    descriptive_title: Mapped[str | None] = mapped_column(String(300))
    section_code: Mapped[str | None] = mapped_column(String(50))
    time: Mapped[str | None] = mapped_column(String(100))
    day: Mapped[str | None] = mapped_column(String(50))

    # Decision
    status: Mapped[str] = mapped_column(String(20), default=ItemStatus.PENDING.value, nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text)

    # Relationships
    request: Mapped[CourseRequest] = relationship("CourseRequest", back_populates="items")

    def __repr__(self) -> str:
        return f"<RequestItem id={self.id} {self.action} {self.course_code} status={self.status}>"
