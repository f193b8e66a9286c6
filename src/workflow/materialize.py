"""Turn a validated request payload into per-course RequestItem rows.

- add / add_with_exception: one ``add`` item per course.
- drop: one ``drop`` item per course.
- change: for each index, a ``drop`` item for the old course and an ``add``
  item for the new one, sharing a fresh group id.
- change_year_level: no items.
"""

from __future__ import annotations

import uuid

from src.models.enums import ItemAction, ItemStatus, RequestType
from src.models.request_item import RequestItem
from src.schemas.requests import ChangePayload, CourseLine, CoursesPayload, RequestPayload


def _course_item(
    request_id: uuid.UUID | None,
    action: ItemAction,
    course: CourseLine,
    position: int,
    group_id: uuid.UUID | None = None,
) -> RequestItem:
    return RequestItem(
        id=uuid.uuid4(),
        request_id=request_id,
        group_id=group_id,
        position=position,
        action=action.value,
        course_code=course.course_code,
        descriptive_title=course.descriptive_title,
        section_code=course.section_code,
        time=course.time,
        day=course.day,
        status=ItemStatus.PENDING.value,
    )


def build_items(
    request_type: RequestType,
    payload: RequestPayload,
    request_id: uuid.UUID | None = None,
) -> list[RequestItem]:
    """Build unsaved items for a request.

    Args:
        request_type: Type of the owning request.
        payload: Payload already validated for that type.
        request_id: Owning request id, when known.

    Returns:
        Items in display order, all ``pending``.
    """
    if request_type is RequestType.CHANGE_YEAR_LEVEL:
        return []

    if request_type is RequestType.CHANGE:
        if not isinstance(payload, ChangePayload):
            msg = f"change request needs a ChangePayload, got {type(payload).__name__}"
            raise TypeError(msg)
        items: list[RequestItem] = []
        for old, new in zip(payload.old_courses, payload.new_courses, strict=True):
            group_id = uuid.uuid4()
            items.append(RequestItem(
                id=uuid.uuid4(),
                request_id=request_id,
                group_id=group_id,
                position=len(items),
                action=ItemAction.DROP.value,
                course_code=old.course_code,
                status=ItemStatus.PENDING.value,
            ))
            items.append(_course_item(request_id, ItemAction.ADD, new, len(items), group_id))
        return items

    if not isinstance(payload, CoursesPayload):
        msg = f"{request_type.value} request needs a CoursesPayload, got {type(payload).__name__}"
        raise TypeError(msg)

    action = ItemAction.DROP if request_type is RequestType.DROP else ItemAction.ADD
    return [_course_item(request_id, action, course, i) for i, course in enumerate(payload.courses)]
