"""Pydantic schemas for request submission, decisions and API responses.

`request_data` is a tagged union keyed by `request_type`: one payload shape
per tag, validated where the submission is parsed. Payloads are stored with
camelCase keys (`courseCode`, `oldCourses`, ...) as the web client sends them.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from src.models.enums import RequestType

NonBlank = Annotated[str, Field(min_length=1)]


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _blank_to_none(value: Any) -> Any:
    return _strip(value) or None


class _Payload(BaseModel):
    """Base for request_data shapes. camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    def to_json(self) -> dict[str, Any]:
        """Serialize for the JSONB column."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# ── request_data payloads ──────────────────────────────────────────


class CourseLine(_Payload):
    """A fully specified course: what a student adds (or drops)."""

    course_code: NonBlank
    descriptive_title: NonBlank
    section_code: NonBlank
    time: NonBlank
    day: NonBlank


class OldCourse(_Payload):
    """A course being swapped out by a change request; only the code is needed."""

    course_code: NonBlank


class CoursesPayload(_Payload):
    """Payload for add, add_with_exception and drop requests.

    ``reason`` is only sent by the combined multi-request form.
    """

    courses: list[CourseLine] = Field(min_length=1)
    reason: str | None = None

    @field_validator("reason", mode="before")
    @classmethod
    def _blank_reason(cls, v: Any) -> Any:
        return _blank_to_none(v)


class ChangePayload(_Payload):
    """Payload for change requests: old_courses[i] is swapped for new_courses[i]."""

    old_courses: list[OldCourse] = Field(min_length=1)
    new_courses: list[CourseLine] = Field(min_length=1)
    reason: str | None = None

    @field_validator("reason", mode="before")
    @classmethod
    def _blank_reason(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @model_validator(mode="after")
    def _pairs_line_up(self) -> ChangePayload:
        if len(self.old_courses) != len(self.new_courses):
            msg = "oldCourses and newCourses must have the same length"
            raise ValueError(msg)
        return self


class YearLevelPayload(_Payload):
    """Payload for the legacy change_year_level request."""

    current_year_level: NonBlank
    reason: NonBlank


RequestPayload = CoursesPayload | ChangePayload | YearLevelPayload


# ── Submissions (discriminated on request_type) ────────────────────


class StudentInfo(BaseModel):
    """Identity snapshot copied onto every request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id_number: NonBlank
    college: NonBlank
    program: NonBlank
    last_name: NonBlank
    first_name: NonBlank
    middle_name: str | None = None
    suffix: str | None = None
    email: NonBlank
    phone_number: NonBlank
    facebook: str | None = None

    @field_validator("middle_name", "suffix", "facebook", mode="before")
    @classmethod
    def _blank_optional(cls, v: Any) -> Any:
        return _blank_to_none(v)


class CourseListEntry(BaseModel):
    request_type: Literal["add", "add_with_exception", "drop"]
    request_data: CoursesPayload


class ChangeEntry(BaseModel):
    request_type: Literal["change"]
    request_data: ChangePayload


class YearLevelEntry(BaseModel):
    request_type: Literal["change_year_level"]
    request_data: YearLevelPayload


RequestEntry = Annotated[
    CourseListEntry | ChangeEntry | YearLevelEntry,
    Field(discriminator="request_type"),
]


class Submission(StudentInfo):
    """A single-type submission from the request form."""

    entry: RequestEntry

    @property
    def request_type(self) -> RequestType:
        return RequestType(self.entry.request_type)

    @property
    def payload(self) -> RequestPayload:
        return self.entry.request_data


class BatchSubmission(StudentInfo):
    """Several request types submitted together; each type is guarded independently."""

    entries: list[RequestEntry] = Field(min_length=1)

    @model_validator(mode="after")
    def _one_entry_per_type(self) -> BatchSubmission:
        types = [e.request_type for e in self.entries]
        if len(types) != len(set(types)):
            msg = "Each request type may appear only once in a batch"
            raise ValueError(msg)
        return self

    def submissions(self) -> list[Submission]:
        """Split into single-type submissions sharing the identity snapshot."""
        info = self.model_dump(include=set(StudentInfo.model_fields))
        return [Submission.model_validate({**info, "entry": entry.model_dump()}) for entry in self.entries]


# ── Staff decisions ────────────────────────────────────────────────


class Decision(BaseModel):
    """Approve or reject one item, one change group, or a whole legacy request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    status: Literal["approved", "rejected"]
    reason: str | None = None
    remarks: str | None = None


class FinalizeRequest(BaseModel):
    """Body of the finalize / re-finalize call.

    ``decisions`` is keyed by item id, or by group id for change requests.
    ``request_decision`` decides legacy requests that have no items.
    ``remarks`` is an optional request-level comment.
    """

    decisions: dict[str, Decision] = Field(default_factory=dict)
    request_decision: Decision | None = None
    remarks: str | None = None


class FlagUpdate(BaseModel):
    flagged: bool


# ── Responses ──────────────────────────────────────────────────────


class RequestItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    request_id: uuid.UUID
    group_id: uuid.UUID | None = None
    position: int
    action: str
    course_code: str
    descriptive_title: str | None = None
    section_code: str | None = None
    time: str | None = None
    day: str | None = None
    status: str
    remarks: str | None = None


class RequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    request_type: str
    status: str
    request_data: dict[str, Any]
    remarks: str | None = None
    created_at: datetime
    processed_at: datetime | None = None
    completed_at: datetime | None = None
    is_flagged: bool = False
    id_number: str
    college: str
    program: str
    last_name: str
    first_name: str
    middle_name: str | None = None
    suffix: str | None = None
    email: str
    phone_number: str
    facebook: str | None = None
    queue_position: int | None = None


class RequestDetailOut(RequestOut):
    items: list[RequestItemOut] = Field(default_factory=list)


class BatchResultOut(BaseModel):
    submitted: list[RequestOut]
    skipped: list[RequestType]


class QueuePositionOut(BaseModel):
    request_id: uuid.UUID
    position: int | None
