from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4


class ContentType(str, Enum):
    FLASHCARD = "Flashcard"
    QUIZ = "Quiz"
    MCQ = "MCQ"
    QA = "qa"


class ContentStatus(str, Enum):
    GENERATING = "Generating"
    READY = "Ready"
    ERROR = "Error"


@dataclass(frozen=True, slots=True)
class StudyTypeContent:
    """AI-generated study material for a course.

    The row exists (status=Generating, content=None) before the job runs so
    the client has something to poll.
    """

    id: str
    course_id: str
    type: ContentType
    status: ContentStatus
    created_at: datetime
    created_by: str
    content: Any = None
    error: str | None = None

    @staticmethod
    def new(
        *, course_id: str, type: ContentType, created_by: str, now: datetime
    ) -> StudyTypeContent:
        return StudyTypeContent(
            id=str(uuid4()),
            course_id=course_id,
            type=type,
            status=ContentStatus.GENERATING,
            created_at=now,
            created_by=created_by,
        )
