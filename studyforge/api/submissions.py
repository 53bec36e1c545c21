"""Assignment submissions, unlock requests and the admin review queue.

Student:
  POST /v1/submissions                                202: Submitted (grading queued)
                                                      or UnlockRequested when late
  GET  /v1/submissions/{assignment_id}
  POST /v1/submissions/{assignment_id}/unlock-request
  POST /v1/submissions/{assignment_id}/retry-grading  202

Admin:
  GET  /v1/admin/submissions?status=PendingReview
  POST /v1/admin/submissions/unlock-decision
  POST /v1/admin/submissions/bulk-unlock-decision
  POST /v1/admin/submissions/grade
  POST /v1/admin/assignments/reminders             remind students of work due soon

Illegal transitions answer 409 with the current status in the detail.
"""

from __future__ import annotations

import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from studyforge.api.dependencies import (
    AdminUser,
    CurrentUser,
    PipelineDep,
    ensure_self_or_admin,
)
from studyforge.api.errors import http_errors
from studyforge.api.ratelimit import require_rate_limit
from studyforge.models.principal import Principal
from studyforge.models.submission import SubmissionStatus

router = APIRouter(tags=["submissions"])


class SubmissionIn(BaseModel):
    assignment_id: str
    course_id: str
    content: str = Field(min_length=1)
    submission_type: Literal["text", "code", "document", "url"] = "text"
    language: str | None = None
    unlock_reason: str | None = None


class SubmissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    assignment_id: str
    course_id: str
    student_email: str
    submission_type: str
    status: SubmissionStatus
    submitted_at: datetime.datetime
    score: int | None
    feedback: str | None
    strengths: list[str]
    improvements: list[str]
    graded_by: str | None
    graded_at: datetime.datetime | None
    unlock_reason: str | None
    review_requested: bool
    decided_by: str | None
    decided_at: datetime.datetime | None


class UnlockRequestIn(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


class UnlockDecisionIn(BaseModel):
    assignment_id: str
    course_id: str
    student_email: str
    approve: bool


class UnlockPair(BaseModel):
    assignment_id: str | None = None
    course_id: str | None = None
    student_email: str | None = None


class BulkUnlockDecisionIn(BaseModel):
    requests: list[UnlockPair]
    approve: bool


class BulkUnlockDecisionOut(BaseModel):
    updated: int
    submissions: list[SubmissionOut]


class RemindersOut(BaseModel):
    sent: int


class ManualGradeIn(BaseModel):
    assignment_id: str
    student_email: str
    score: int = Field(ge=0, le=100)
    feedback: str = ""


def _student(principal: Principal, student_email: str | None) -> str:
    if student_email is None:
        return principal.user_id
    ensure_self_or_admin(principal, student_email)
    return student_email.strip().lower()


# ---------------------------------------------------------------------------
# Student
# ---------------------------------------------------------------------------


@router.post(
    "/v1/submissions",
    response_model=SubmissionOut,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_rate_limit("assignment"))],
)
async def submit(
    body: SubmissionIn, principal: CurrentUser, pipeline: PipelineDep
) -> SubmissionOut:
    with http_errors():
        sub = await pipeline.submissions.submit(
            assignment_id=body.assignment_id,
            course_id=body.course_id,
            student_email=principal.user_id,
            content=body.content,
            submission_type=body.submission_type,
            language=body.language,
            unlock_reason=body.unlock_reason,
        )
    return SubmissionOut.model_validate(sub)


@router.get("/v1/submissions/{assignment_id}", response_model=SubmissionOut)
async def get_submission(
    assignment_id: str,
    principal: CurrentUser,
    pipeline: PipelineDep,
    student_email: str | None = None,
) -> SubmissionOut:
    email = _student(principal, student_email)
    with http_errors():
        sub = await pipeline.submissions.get(assignment_id, email)
    return SubmissionOut.model_validate(sub)


@router.post(
    "/v1/submissions/{assignment_id}/unlock-request", response_model=SubmissionOut
)
async def request_unlock(
    assignment_id: str,
    body: UnlockRequestIn,
    principal: CurrentUser,
    pipeline: PipelineDep,
) -> SubmissionOut:
    with http_errors():
        sub = await pipeline.submissions.request_unlock(
            assignment_id, principal.user_id, body.reason
        )
    return SubmissionOut.model_validate(sub)


@router.post(
    "/v1/submissions/{assignment_id}/retry-grading",
    response_model=SubmissionOut,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_rate_limit("assignment"))],
)
async def retry_grading(
    assignment_id: str,
    principal: CurrentUser,
    pipeline: PipelineDep,
    student_email: str | None = None,
) -> SubmissionOut:
    email = _student(principal, student_email)
    with http_errors():
        sub = await pipeline.submissions.retry_grading(assignment_id, email)
    return SubmissionOut.model_validate(sub)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/v1/admin/submissions", response_model=list[SubmissionOut])
async def list_submissions(
    _admin: AdminUser,
    pipeline: PipelineDep,
    status_filter: Annotated[
        SubmissionStatus, Query(alias="status")
    ] = SubmissionStatus.PENDING_REVIEW,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[SubmissionOut]:
    with http_errors():
        subs = await pipeline.submissions.list_by_status(status_filter, limit)
    return [SubmissionOut.model_validate(s) for s in subs]


@router.post("/v1/admin/submissions/unlock-decision", response_model=SubmissionOut)
async def decide_unlock(
    body: UnlockDecisionIn, admin: AdminUser, pipeline: PipelineDep
) -> SubmissionOut:
    with http_errors():
        sub = await pipeline.submissions.decide_unlock(
            body.assignment_id,
            body.student_email.strip().lower(),
            body.approve,
            admin.user_id,
            course_id=body.course_id,
        )
    return SubmissionOut.model_validate(sub)


@router.post(
    "/v1/admin/submissions/bulk-unlock-decision", response_model=BulkUnlockDecisionOut
)
async def bulk_decide_unlock(
    body: BulkUnlockDecisionIn, admin: AdminUser, pipeline: PipelineDep
) -> BulkUnlockDecisionOut:
    with http_errors():
        subs = await pipeline.submissions.bulk_decide(
            [r.model_dump() for r in body.requests], body.approve, admin.user_id
        )
    return BulkUnlockDecisionOut(
        updated=len(subs), submissions=[SubmissionOut.model_validate(s) for s in subs]
    )


@router.post("/v1/admin/submissions/grade", response_model=SubmissionOut)
async def grade_manually(
    body: ManualGradeIn, admin: AdminUser, pipeline: PipelineDep
) -> SubmissionOut:
    with http_errors():
        sub = await pipeline.submissions.grade_manually(
            body.assignment_id,
            body.student_email.strip().lower(),
            score=body.score,
            feedback=body.feedback,
            grader=admin.user_id,
        )
    return SubmissionOut.model_validate(sub)


@router.post("/v1/admin/assignments/reminders", response_model=RemindersOut)
async def send_due_reminders(_admin: AdminUser, pipeline: PipelineDep) -> RemindersOut:
    with http_errors():
        sent = await pipeline.submissions.send_due_reminders()
    return RemindersOut(sent=sent)
