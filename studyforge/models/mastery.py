from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

Difficulty = Literal["Easy", "Medium", "Hard"]
MasteryLevel = Literal["novice", "beginner", "intermediate", "proficient", "expert"]


@dataclass(frozen=True, slots=True)
class AdaptivePerformance:
    """Running performance of one student on one topic of one course."""

    course_id: str
    student_email: str
    topic_id: str
    topic_name: str
    total_attempts: int
    average_score: float
    last_score: float
    current_difficulty: Difficulty
    recommended_difficulty: Difficulty
    mastery_level: MasteryLevel
    is_weak_topic: bool
    updated_at: datetime

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.course_id, self.student_email, self.topic_id)


@dataclass(frozen=True, slots=True)
class NextAction:
    topic_id: str
    topic_name: str
    recommended_difficulty: Difficulty
    average_score: float
    is_weak_topic: bool

    @property
    def suggestion(self) -> str:
        if self.is_weak_topic:
            return (
                f"Revisit {self.topic_name} and take a quiz at "
                f"{self.recommended_difficulty} difficulty."
            )
        return f"Keep your streak: take a quiz on {self.topic_name} to reinforce learning."


@dataclass(frozen=True, slots=True)
class MasterySummary:
    overall_mastery: int
    topics_mastered: int
    topics_weak: int
    weak_topics: tuple[str, ...]
    next_action: NextAction | None
