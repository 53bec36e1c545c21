"""Typed payloads for every event the dispatcher accepts.

The event name selects the schema; a payload that does not match it is
rejected at send() time, before anything reaches the queue, and again by
the worker before the handler runs (a task can outlive a deploy).
"""

from __future__ import annotations

from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from studyforge.core.errors import ValidationError
from studyforge.models.content import ContentType

USER_CREATE = "user.create"
STUDY_CONTENT = "studyType.content"
ASSIGNMENT_GRADE = "assignment.grade"
ASSIGNMENTS_GENERATE = "assignments.generate"
CERTIFICATE_ISSUE = "certificate.issue"


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class UserCreatePayload(_Payload):
    email: str = Field(min_length=3, max_length=320)
    name: str = ""


class StudyContentPayload(_Payload):
    content_id: str
    course_id: str
    type: ContentType
    prompt: str = Field(min_length=1)


class AssignmentGradePayload(_Payload):
    submission_id: str
    assignment_id: str
    course_id: str
    student_email: str
    # row version the event was emitted for; older deliveries are stale
    version: int | None = None


class AssignmentsGeneratePayload(_Payload):
    course_id: str
    created_by: str
    topic: str
    difficulty: str = "Medium"
    count: int = Field(default=3, ge=1, le=10)


class CertificateIssuePayload(_Payload):
    course_id: str
    student_email: str
    student_name: str = ""


EVENT_SCHEMAS: dict[str, type[BaseModel]] = {
    USER_CREATE: UserCreatePayload,
    STUDY_CONTENT: StudyContentPayload,
    ASSIGNMENT_GRADE: AssignmentGradePayload,
    ASSIGNMENTS_GENERATE: AssignmentsGeneratePayload,
    CERTIFICATE_ISSUE: CertificateIssuePayload,
}


def parse_payload(event_name: str, payload: dict[str, Any] | BaseModel) -> BaseModel:
    """Validate a raw payload against the schema registered for event_name."""
    schema = EVENT_SCHEMAS.get(event_name)
    if schema is None:
        raise ValidationError(f"unknown event {event_name!r}")
    if isinstance(payload, schema):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    try:
        return schema.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(f"invalid payload for {event_name}: {e}") from e
