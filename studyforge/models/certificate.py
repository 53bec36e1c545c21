from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4


@dataclass(frozen=True, slots=True)
class Certificate:
    """Proof that a student completed a course.

    At most one per (course_id, student_email); `certificate_id` is the
    public handle anyone can verify.
    """

    certificate_id: str
    course_id: str
    student_email: str
    student_name: str
    course_name: str
    final_score: int
    issued_at: datetime

    @staticmethod
    def new(
        *,
        course_id: str,
        student_email: str,
        student_name: str,
        course_name: str,
        final_score: int,
        now: datetime,
    ) -> Certificate:
        return Certificate(
            certificate_id=str(uuid4()),
            course_id=course_id,
            student_email=student_email,
            student_name=student_name,
            course_name=course_name,
            final_score=final_score,
            issued_at=now,
        )
