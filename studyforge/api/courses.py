"""Course creation, enrollment and assignments.

  POST /v1/courses                          202: debit 1 credit, queue generation
  GET  /v1/courses/{course_id}              status: Generating|Ready|Error|Failed
  POST /v1/courses/{course_id}/enroll       201, idempotent
  GET  /v1/courses/{course_id}/assignments
  POST /v1/admin/courses/due-dates          re-derive every due date
  POST /v1/admin/courses/cleanup            fail + refund stuck generations

Creation is rate limited (course-generation) inside CourseService, before
the debit, so a rejected request costs nothing.
"""

from __future__ import annotations

import datetime
from typing import Literal

from fastapi import APIRouter, status
from pydantic import BaseModel, ConfigDict, Field

from studyforge.api.dependencies import AdminUser, CurrentUser, PipelineDep
from studyforge.api.errors import http_errors
from studyforge.models.course import CourseStatus

router = APIRouter(tags=["courses"])


class CourseIn(BaseModel):
    topic: str = Field(min_length=1, max_length=500)
    course_type: str = "General"
    difficulty: Literal["Easy", "Medium", "Hard"] = "Medium"
    assignment_count: int = Field(default=1, ge=1, le=10)


class CourseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    course_id: str
    created_by: str
    topic: str
    course_type: str
    difficulty: str
    status: CourseStatus
    created_at: datetime.datetime


class EnrollmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    course_id: str
    student_email: str
    enrolled_at: datetime.datetime


class AssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    assignment_id: str
    course_id: str
    title: str
    description: str
    total_points: int
    rubric: dict
    due_date: datetime.datetime


class MaintenanceOut(BaseModel):
    updated: int
    course_ids: list[str] = []


@router.post(
    "/v1/courses", response_model=CourseOut, status_code=status.HTTP_202_ACCEPTED
)
async def create_course(
    body: CourseIn, principal: CurrentUser, pipeline: PipelineDep
) -> CourseOut:
    with http_errors():
        course = await pipeline.courses.create_course(
            created_by=principal.user_id,
            topic=body.topic,
            course_type=body.course_type,
            difficulty=body.difficulty,
            assignment_count=body.assignment_count,
        )
    return CourseOut.model_validate(course)


@router.get("/v1/courses/{course_id}", response_model=CourseOut)
async def get_course(
    course_id: str, _principal: CurrentUser, pipeline: PipelineDep
) -> CourseOut:
    with http_errors():
        course = await pipeline.courses.get_course(course_id)
    return CourseOut.model_validate(course)


@router.post(
    "/v1/courses/{course_id}/enroll",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def enroll(
    course_id: str, principal: CurrentUser, pipeline: PipelineDep
) -> EnrollmentOut:
    with http_errors():
        enrollment = await pipeline.courses.enroll(course_id, principal.user_id)
    return EnrollmentOut.model_validate(enrollment)


@router.get("/v1/courses/{course_id}/assignments", response_model=list[AssignmentOut])
async def list_assignments(
    course_id: str, _principal: CurrentUser, pipeline: PipelineDep
) -> list[AssignmentOut]:
    with http_errors():
        assignments = await pipeline.courses.list_assignments(course_id)
    return [AssignmentOut.model_validate(a) for a in assignments]


# ---------------------------------------------------------------------------
# Admin maintenance
# ---------------------------------------------------------------------------


@router.post("/v1/admin/courses/due-dates", response_model=MaintenanceOut)
async def recompute_due_dates(_admin: AdminUser, pipeline: PipelineDep) -> MaintenanceOut:
    with http_errors():
        updated = await pipeline.courses.recompute_due_dates()
    return MaintenanceOut(updated=updated)


@router.post("/v1/admin/courses/cleanup", response_model=MaintenanceOut)
async def cleanup_stale_courses(_admin: AdminUser, pipeline: PipelineDep) -> MaintenanceOut:
    with http_errors():
        reaped = await pipeline.courses.cleanup_stale_courses()
    return MaintenanceOut(updated=len(reaped), course_ids=reaped)
