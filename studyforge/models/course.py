from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import uuid4


class CourseStatus(str, Enum):
    GENERATING = "Generating"
    READY = "Ready"
    ERROR = "Error"  # generation job gave up
    FAILED = "Failed"  # stuck in Generating, reaped by the cleanup sweep


@dataclass(frozen=True, slots=True)
class Course:
    course_id: str
    created_by: str
    topic: str
    course_type: str
    difficulty: str
    status: CourseStatus
    created_at: datetime

    @staticmethod
    def new(
        *,
        created_by: str,
        topic: str,
        course_type: str,
        difficulty: str,
        now: datetime,
    ) -> Course:
        return Course(
            course_id=str(uuid4()),
            created_by=created_by,
            topic=topic,
            course_type=course_type,
            difficulty=difficulty,
            status=CourseStatus.GENERATING,
            created_at=now,
        )


@dataclass(frozen=True, slots=True)
class Enrollment:
    course_id: str
    student_email: str
    enrolled_at: datetime


@dataclass(frozen=True, slots=True)
class CourseAssignment:
    assignment_id: str
    course_id: str
    title: str
    description: str
    due_date: datetime
    created_at: datetime
    total_points: int = 100
    rubric: dict = field(default_factory=dict)

    @staticmethod
    def new(
        *,
        course_id: str,
        title: str,
        description: str,
        due_date: datetime,
        now: datetime,
        total_points: int = 100,
        rubric: dict | None = None,
    ) -> CourseAssignment:
        return CourseAssignment(
            assignment_id=str(uuid4()),
            course_id=course_id,
            title=title,
            description=description,
            due_date=due_date,
            created_at=now,
            total_points=total_points,
            rubric=dict(rubric or {}),
        )
