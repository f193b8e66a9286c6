"""Request lifecycle engine: submit, edit, start processing, cancel, finalize, flag.

Each operation is one unit of work on the caller's AsyncSession: validate,
write, commit, then emit the change events so feeds re-fetch committed rows.
SQLAlchemy failures surface as StoreError and are never retried here.
"""

from __future__ import annotations

import contextlib
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.course_request import CourseRequest
from src.models.enums import RequestStatus, RequestType
from src.models.request_item import RequestItem
from src.realtime.events import emit
from src.schemas.events import EventType, SystemEvent
from src.schemas.requests import BatchSubmission, FinalizeRequest, StudentInfo, Submission
from src.workflow import store
from src.workflow.aggregator import aggregate
from src.workflow.errors import (
    DuplicateActiveRequest,
    Forbidden,
    InvalidStateTransition,
    RequestNotFound,
    StoreError,
)
from src.workflow.fsm import RequestStateMachine
from src.workflow.guard import duplicate_guard
from src.workflow.materialize import build_items
from src.workflow.queue import queue_calculator
from src.workflow.states import EDITABLE_STATUSES, FINALIZE_TRIGGERS

logger = logging.getLogger(__name__)

_IDENTITY_FIELDS = frozenset(StudentInfo.model_fields)


@dataclass
class BatchResult:
    submitted: list[CourseRequest] = field(default_factory=list)
    skipped: list[RequestType] = field(default_factory=list)


@dataclass
class RequestDetail:
    request: CourseRequest
    items: list[RequestItem] = field(default_factory=list)
    queue_position: int | None = None


@contextlib.asynccontextmanager
async def _store_call(operation: str, request_id: uuid.UUID | None = None) -> AsyncIterator[None]:
    """Translate SQLAlchemy failures into StoreError for one operation."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Store failure during %s (request=%s)", operation, request_id)
        raise StoreError(operation, request_id) from exc


def _now() -> datetime:
    return datetime.now(UTC)


def _apply_submission(request: CourseRequest, submission: Submission) -> None:
    for name, value in submission.model_dump(include=set(_IDENTITY_FIELDS)).items():
        setattr(request, name, value)
    request.request_type = submission.request_type.value
    request.request_data = submission.payload.to_json()


class RequestLifecycle:
    """Stateless lifecycle service; pass a database session to every call."""

    # ── Helpers ──────────────────────────────────────────────────────

    async def _load(self, db: AsyncSession, request_id: uuid.UUID) -> CourseRequest:
        request = await store.get_request(db, request_id)
        if request is None:
            raise RequestNotFound(request_id)
        return request

    def _new_request(self, db: AsyncSession, user_id: uuid.UUID, submission: Submission) -> CourseRequest:
        request = CourseRequest(
            id=uuid.uuid4(),
            user_id=user_id,
            status=RequestStatus.PENDING.value,
            is_flagged=False,
            created_at=_now(),
        )
        _apply_submission(request, submission)
        db.add(request)
        db.add_all(build_items(submission.request_type, submission.payload, request.id))
        return request

    async def _emit_submitted(self, request: CourseRequest) -> None:
        await emit(SystemEvent(
            event_type=EventType.REQUEST_SUBMITTED,
            request_id=request.id,
            user_id=request.user_id,
            actor_id=str(request.user_id),
            actor_role="student",
            data={"request_type": request.request_type},
            source_module="workflow.engine",
        ))

    # ── Student operations ───────────────────────────────────────────

    async def submit(self, db: AsyncSession, user_id: uuid.UUID, submission: Submission) -> CourseRequest:
        """Insert a pending request with its items.

        Raises:
            DuplicateActiveRequest: The user already has this type in flight.
            StoreError: The database call failed.
        """
        request_type = submission.request_type
        async with _store_call("submit"):
            if not await duplicate_guard.can_submit(db, user_id, request_type):
                raise DuplicateActiveRequest(request_type.value)
            request = self._new_request(db, user_id, submission)
            await db.flush()
            await db.commit()

        logger.info("Request submitted: type=%s request=%s user=%s", request_type.value, request.id, user_id)
        await self._emit_submitted(request)
        return request

    async def submit_batch(self, db: AsyncSession, user_id: uuid.UUID, batch: BatchSubmission) -> BatchResult:
        """Submit several types at once; blocked types are skipped, not fatal."""
        submissions = batch.submissions()
        result = BatchResult()

        async with _store_call("submit_batch"):
            blocked = await duplicate_guard.blocked_types(db, user_id, [s.request_type for s in submissions])
            for submission in submissions:
                if submission.request_type in blocked:
                    result.skipped.append(submission.request_type)
                    continue
                result.submitted.append(self._new_request(db, user_id, submission))
            if result.submitted:
                await db.flush()
                await db.commit()

        logger.info(
            "Batch submitted: %d created, skipped=%s user=%s",
            len(result.submitted),
            [t.value for t in result.skipped],
            user_id,
        )
        for request in result.submitted:
            await self._emit_submitted(request)
        for request_type in result.skipped:
            await emit(SystemEvent(
                event_type=EventType.SUBMISSION_SKIPPED,
                user_id=user_id,
                actor_id=str(user_id),
                actor_role="student",
                data={"request_type": request_type.value, "reason": "duplicate_active_request"},
                source_module="workflow.engine",
            ))
        return result

    async def update_pending(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        user_id: uuid.UUID,
        submission: Submission,
    ) -> CourseRequest:
        """Owner edit of a pending request; items are rebuilt from the new payload.

        Raises:
            RequestNotFound, Forbidden, InvalidStateTransition, DuplicateActiveRequest, StoreError
        """
        async with _store_call("update_pending", request_id):
            request = await self._load(db, request_id)
            if request.user_id != user_id:
                raise Forbidden("Only the owner may edit this request", request_id)
            if RequestStatus(request.status) not in EDITABLE_STATUSES:
                raise InvalidStateTransition("edit", request.status, request_id)

            new_type = submission.request_type
            if not await duplicate_guard.can_submit(db, user_id, new_type, exclude_request_id=request.id):
                raise DuplicateActiveRequest(new_type.value, request_id)

            _apply_submission(request, submission)
            await store.replace_items(db, request.id, build_items(new_type, submission.payload, request.id))
            await db.commit()

        logger.info("Request updated: type=%s request=%s user=%s", new_type.value, request_id, user_id)
        await emit(SystemEvent(
            event_type=EventType.REQUEST_UPDATED,
            request_id=request.id,
            user_id=user_id,
            actor_id=str(user_id),
            actor_role="student",
            data={"request_type": new_type.value},
            source_module="workflow.engine",
        ))
        return request

    async def cancel(self, db: AsyncSession, request_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Delete the owner's pending request; items cascade.

        Raises:
            RequestNotFound: No such request.
            Forbidden: The caller does not own it.
            InvalidStateTransition: It is no longer pending.
        """
        async with _store_call("cancel", request_id):
            request = await self._load(db, request_id)
            if request.user_id != user_id:
                raise Forbidden("Only the owner may cancel this request", request_id)
            if RequestStatus(request.status) not in EDITABLE_STATUSES:
                raise InvalidStateTransition("cancel", request.status, request_id)
            request_type = request.request_type
            await store.delete_request(db, request_id)
            await db.commit()

        logger.info("Request cancelled: request=%s user=%s", request_id, user_id)
        await emit(SystemEvent(
            event_type=EventType.REQUEST_CANCELLED,
            request_id=request_id,
            user_id=user_id,
            actor_id=str(user_id),
            actor_role="student",
            data={"request_type": request_type},
            source_module="workflow.engine",
        ))

    async def get_detail(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        viewer_id: uuid.UUID,
        is_staff: bool = False,
    ) -> RequestDetail:
        """Request, its items and (while pending) its queue position."""
        async with _store_call("get_detail", request_id):
            request = await self._load(db, request_id)
            if not is_staff and request.user_id != viewer_id:
                raise Forbidden("Only the owner may view this request", request_id)
            items = await store.get_items(db, request.id)
            position = None
            if request.status == RequestStatus.PENDING.value:
                position = await queue_calculator.queue_position(db, request.id)
        return RequestDetail(request=request, items=items, queue_position=position)

    # ── Staff operations ─────────────────────────────────────────────

    async def start_processing(self, db: AsyncSession, request_id: uuid.UUID, actor_id: str) -> CourseRequest:
        """pending -> processing, stamping processed_at.

        Raises:
            InvalidStateTransition: The request is not pending.
        """
        async with _store_call("start_processing", request_id):
            request = await self._load(db, request_id)
            fsm = RequestStateMachine(request.id, request.status)
            next_status = fsm.next_status("start_processing")
            request.status = next_status.value
            request.processed_at = _now()
            await db.commit()

        await fsm.transition("start_processing", actor_id=actor_id, user_id=request.user_id)
        return request

    async def finalize(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        body: FinalizeRequest,
        actor_id: str,
        reopen: bool = False,
    ) -> RequestDetail:
        """Aggregate staff decisions and persist them atomically.

        Args:
            db: Database session.
            request_id: Request to finalize.
            body: Per-item/group decisions, legacy request decision, comment.
            actor_id: Staff member finalizing.
            reopen: Re-finalize from history; also allowed from terminal statuses.

        Raises:
            InvalidStateTransition: Not processing (or not terminal when reopening).
            DecisionError: Decisions failed validation; nothing was written.
            StoreError: The atomic write failed.
        """
        async with _store_call("finalize", request_id):
            request = await self._load(db, request_id)
            fsm = RequestStateMachine(request.id, request.status)
            status = fsm.current_status
            allowed = status is RequestStatus.PROCESSING or (reopen and fsm.is_terminal)
            if not allowed:
                raise InvalidStateTransition("re-finalize" if reopen else "finalize", status.value, request_id)

            items = await store.get_items(db, request.id)
            outcome = aggregate(
                request.request_type,
                items,
                body.decisions,
                request_decision=body.request_decision,
                comment=body.remarks,
                request_id=request.id,
            )

            trigger = FINALIZE_TRIGGERS[outcome.status]
            fsm.next_status(trigger, reopen=reopen)

            # The loaded request and items are synchronized in place by the write
            await store.finalize_request_decisions(db, request.id, outcome, _now())
            await db.commit()

        await fsm.transition(trigger, reopen=reopen, actor_id=actor_id, user_id=request.user_id)
        logger.info(
            "Request finalized: status=%s request=%s actor=%s reopen=%s",
            outcome.status.value,
            request_id,
            actor_id,
            reopen,
        )
        await emit(SystemEvent(
            event_type=EventType.REQUEST_FINALIZED,
            request_id=request.id,
            user_id=request.user_id,
            actor_id=actor_id,
            actor_role="staff",
            data={
                "status": outcome.status.value,
                "reopened": reopen,
                "items": {str(o.item_id): o.status.value for o in outcome.items},
            },
            source_module="workflow.engine",
        ))
        return RequestDetail(request=request, items=items)

    async def update_flag(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        flagged: bool,
        actor_id: str,
    ) -> CourseRequest:
        """Toggle the staff flag; allowed in any status."""
        async with _store_call("update_flag", request_id):
            request = await self._load(db, request_id)
            request.is_flagged = flagged
            await db.commit()

        logger.info("Request flag set to %s: request=%s actor=%s", flagged, request_id, actor_id)
        await emit(SystemEvent(
            event_type=EventType.REQUEST_FLAGGED,
            request_id=request.id,
            user_id=request.user_id,
            actor_id=actor_id,
            actor_role="staff",
            data={"flagged": flagged},
            source_module="workflow.engine",
        ))
        return request


# Module-level singleton
request_lifecycle = RequestLifecycle()
