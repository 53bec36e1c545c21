from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

ANONYMOUS_NAME = "Anonymous Learner"


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    student_email: str
    student_name: str
    total_points: int
    total_courses_completed: int
    average_rating: float
    is_anonymous: bool
    achieved_at: datetime  # last time total_points changed; tie-break key
    updated_at: datetime
    rank: int | None = None
    badge: str | None = None  # gold|silver|bronze

    @property
    def display_name(self) -> str:
        return ANONYMOUS_NAME if self.is_anonymous else self.student_name
