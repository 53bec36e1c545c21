from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import uuid4


class SubmissionStatus(str, Enum):
    SUBMITTED = "Submitted"
    PENDING_REVIEW = "PendingReview"
    GRADED = "Graded"
    UNLOCK_REQUESTED = "UnlockRequested"
    UNLOCKED = "Unlocked"
    UNLOCK_DENIED = "UnlockDenied"


@dataclass(frozen=True, slots=True)
class AssignmentSubmission:
    """One row per (assignment_id, student_email).

    `version` is bumped on every write; repositories only accept an update
    whose expected version matches the stored one.
    """

    id: str
    assignment_id: str
    course_id: str
    student_email: str
    content: str
    submission_type: str  # text|code|document|url
    status: SubmissionStatus
    submitted_at: datetime
    language: str | None = None
    score: int | None = None
    feedback: str | None = None
    strengths: tuple[str, ...] = ()
    improvements: tuple[str, ...] = ()
    graded_by: str | None = None  # AI|Fallback|<grader email>
    graded_at: datetime | None = None
    unlock_reason: str | None = None
    review_requested: bool = False
    decided_by: str | None = None
    decided_at: datetime | None = None
    version: int = 1

    @staticmethod
    def new(
        *,
        assignment_id: str,
        course_id: str,
        student_email: str,
        content: str,
        submission_type: str,
        status: SubmissionStatus,
        now: datetime,
        language: str | None = None,
        unlock_reason: str | None = None,
    ) -> AssignmentSubmission:
        return AssignmentSubmission(
            id=str(uuid4()),
            assignment_id=assignment_id,
            course_id=course_id,
            student_email=student_email,
            content=content,
            submission_type=submission_type,
            status=status,
            submitted_at=now,
            language=language,
            unlock_reason=unlock_reason,
        )
