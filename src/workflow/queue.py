"""Queue position calculator.

A pending request's position is its 1-based rank among all pending requests
(legacy change_year_level excluded) ordered by ``created_at`` then ``id``.
Any other status has no position.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.workflow import store


def rank_pending(
    snapshot: Sequence[tuple[uuid.UUID, datetime]],
    request_ids: Iterable[uuid.UUID],
) -> dict[uuid.UUID, int | None]:
    """Rank requests against a pending snapshot.

    Args:
        snapshot: (id, created_at) pairs of the pending population, any order.
        request_ids: Requests to rank.

    Returns:
        Position per requested id; None for ids not in the snapshot.
    """
    ordered = sorted(snapshot, key=lambda row: (row[1], row[0].int))
    positions = {rid: index for index, (rid, _) in enumerate(ordered, start=1)}
    return {rid: positions.get(rid) for rid in request_ids}


class QueuePositionCalculator:
    """Derives FIFO positions from the store; nothing is persisted."""

    async def queue_position(self, db: AsyncSession, request_id: uuid.UUID) -> int | None:
        return await store.get_request_queue_position(db, request_id)

    async def queue_positions(
        self,
        db: AsyncSession,
        request_ids: Iterable[uuid.UUID],
    ) -> dict[uuid.UUID, int | None]:
        """Positions of several requests from one consistent pending snapshot."""
        ids = list(request_ids)
        if not ids:
            return {}
        snapshot = await store.pending_queue_snapshot(db)
        return rank_pending(snapshot, ids)


# Module-level singleton
queue_calculator = QueuePositionCalculator()
