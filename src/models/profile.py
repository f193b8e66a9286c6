"""Profile model: role of an identity-provider user inside this application."""

from __future__ import annotations

import uuid

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin
from src.models.enums import UserRole


class Profile(TimestampMixin, Base):
    """Maps an authenticated user_id to a student or staff role."""

    __tablename__ = "profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), unique=True, nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.STUDENT.value, nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))

    def __repr__(self) -> str:
        return f"<Profile user={self.user_id} role={self.role}>"
