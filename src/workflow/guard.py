"""Duplicate guard: at most one in-flight request per (user, request type).

Advisory check-then-insert. Two concurrent submissions can both pass; there
is no unique constraint behind it.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.enums import RequestType
from src.workflow import store

logger = logging.getLogger(__name__)


class DuplicateGuard:
    """Answers whether a user may file a new request of a given type."""

    async def can_submit(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        request_type: RequestType,
        exclude_request_id: uuid.UUID | None = None,
    ) -> bool:
        """False while the user owns a pending or processing request of this type."""
        blocked = await self.blocked_types(db, user_id, [request_type], exclude_request_id)
        return request_type not in blocked

    async def blocked_types(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        request_types: Iterable[RequestType],
        exclude_request_id: uuid.UUID | None = None,
    ) -> set[RequestType]:
        """Subset of ``request_types`` that already has an in-flight request.

        Args:
            db: Database session.
            user_id: Owner to check.
            request_types: Types about to be submitted.
            exclude_request_id: Request being edited; it never blocks itself.
        """
        blocked = await store.find_active_types(db, user_id, request_types, exclude_request_id)
        if blocked:
            logger.info(
                "Duplicate guard blocked types=%s user=%s",
                sorted(t.value for t in blocked),
                user_id,
            )
        return blocked


# Module-level singleton
duplicate_guard = DuplicateGuard()
