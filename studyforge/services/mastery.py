"""Adaptive mastery engine.

Each (course, student, topic) keeps a running mean of assessment scores.
From it we derive:

    is_weak_topic          average < 60
    mastery_level          novice .. expert (see mastery_level())
    recommended_difficulty one step up at >= 85 after 2+ attempts,
                           one step down below 60 after 2+ attempts

The next action is the weakest weak topic, or when nothing is weak the
lowest-scoring topic overall.  The difficulty recommendation is passed
through to the suggestion as-is.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import asdict
from typing import Any

from studyforge.core.clock import Clock, utcnow
from studyforge.core.errors import ValidationError
from studyforge.models.mastery import (
    AdaptivePerformance,
    Difficulty,
    MasteryLevel,
    MasterySummary,
    NextAction,
)
from studyforge.repos.mastery_repo import MasteryRepo
from studyforge.services.cache import CacheService, CacheTTL, get_or_set_json, invalidate
from studyforge.services.notifier import Notifier, notify_quietly

logger = logging.getLogger(__name__)

WEAK_THRESHOLD = 60
DIFFICULTIES: tuple[Difficulty, ...] = ("Easy", "Medium", "Hard")


def mastery_level(average: float, attempts: int) -> MasteryLevel:
    if attempts == 0:
        return "novice"
    if average >= 85 and attempts >= 2:
        return "expert"
    if average >= 80:
        return "proficient"
    if average >= 70:
        return "intermediate"
    if average >= 60:
        return "beginner"
    return "novice"


def recommend_difficulty(average: float, attempts: int, current: Difficulty) -> Difficulty:
    idx = DIFFICULTIES.index(current)
    if average >= 85 and attempts >= 2 and idx < len(DIFFICULTIES) - 1:
        return DIFFICULTIES[idx + 1]
    if average < WEAK_THRESHOLD and attempts >= 2 and idx > 0:
        return DIFFICULTIES[idx - 1]
    return current


def select_next_action(records: list[AdaptivePerformance]) -> NextAction | None:
    """Weak topics first, lowest average first within each group."""
    if not records:
        return None
    pick = min(records, key=lambda r: (0 if r.is_weak_topic else 1, r.average_score))
    return NextAction(
        topic_id=pick.topic_id,
        topic_name=pick.topic_name,
        recommended_difficulty=pick.recommended_difficulty,
        average_score=pick.average_score,
        is_weak_topic=pick.is_weak_topic,
    )


def mastery_summary(records: list[AdaptivePerformance]) -> MasterySummary:
    if not records:
        return MasterySummary(
            overall_mastery=0,
            topics_mastered=0,
            topics_weak=0,
            weak_topics=(),
            next_action=None,
        )
    weak = sorted((r for r in records if r.is_weak_topic), key=lambda r: r.average_score)
    return MasterySummary(
        overall_mastery=round(sum(r.average_score for r in records) / len(records)),
        topics_mastered=len(records) - len(weak),
        topics_weak=len(weak),
        weak_topics=tuple(r.topic_name for r in weak),
        next_action=select_next_action(records),
    )


def _summary_from_dict(data: dict[str, Any]) -> MasterySummary:
    na = data.get("next_action")
    return MasterySummary(
        overall_mastery=data["overall_mastery"],
        topics_mastered=data["topics_mastered"],
        topics_weak=data["topics_weak"],
        weak_topics=tuple(data["weak_topics"]),
        next_action=NextAction(**na) if na else None,
    )


class MasteryEngine:
    def __init__(
        self,
        repo: MasteryRepo,
        cache: CacheService,
        notifier: Notifier,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._repo = repo
        self._cache = cache
        self._notifier = notifier
        self._clock = clock
        self._locks: defaultdict[tuple[str, str, str], asyncio.Lock] = defaultdict(
            asyncio.Lock
        )

    async def record_assessment(
        self,
        course_id: str,
        student_email: str,
        topic_id: str,
        topic_name: str,
        score: float,
    ) -> AdaptivePerformance:
        if isinstance(score, bool) or not 0 <= score <= 100:
            raise ValidationError("score must be between 0 and 100")

        key = (course_id, student_email, topic_id)
        async with self._locks[key]:
            prev = await self._repo.get(*key)
            attempts = (prev.total_attempts if prev else 0) + 1
            prev_total = prev.average_score * prev.total_attempts if prev else 0.0
            average = (prev_total + score) / attempts
            # the difficulty just played is the one recommended last time
            current: Difficulty = prev.recommended_difficulty if prev else "Easy"

            record = AdaptivePerformance(
                course_id=course_id,
                student_email=student_email,
                topic_id=topic_id,
                topic_name=topic_name or (prev.topic_name if prev else topic_id),
                total_attempts=attempts,
                average_score=average,
                last_score=float(score),
                current_difficulty=current,
                recommended_difficulty=recommend_difficulty(average, attempts, current),
                mastery_level=mastery_level(average, attempts),
                is_weak_topic=average < WEAK_THRESHOLD,
                updated_at=self._clock(),
            )
            await self._repo.upsert(record)

        logger.info(
            "Assessment course=%s student=%s topic=%s score=%s avg=%.1f next=%s",
            course_id,
            student_email,
            topic_id,
            score,
            average,
            record.recommended_difficulty,
        )
        await invalidate(self._cache, f"course:{course_id}:mastery:{student_email}")
        return record

    async def list_topics(
        self, course_id: str, student_email: str
    ) -> list[AdaptivePerformance]:
        return await self._repo.list_for_student(course_id, student_email)

    async def get_summary(self, course_id: str, student_email: str) -> MasterySummary:
        async def _load() -> dict[str, Any]:
            records = await self._repo.list_for_student(course_id, student_email)
            return asdict(mastery_summary(records))

        data = await get_or_set_json(
            self._cache,
            f"course:{course_id}:mastery:{student_email}",
            CacheTTL.SHORT,
            _load,
        )
        return _summary_from_dict(data)

    async def send_progress_reminders(self) -> int:
        """Notify every (student, course) pair with tracked topics.

        Returns how many reminders went out.
        """
        groups: defaultdict[tuple[str, str], list[AdaptivePerformance]] = defaultdict(list)
        for r in await self._repo.list_all():
            groups[(r.student_email, r.course_id)].append(r)

        sent = 0
        for (email, course_id), records in sorted(groups.items()):
            summary = mastery_summary(records)
            data: dict[str, Any] = {
                "course_id": course_id,
                "overall_mastery": summary.overall_mastery,
                "weak_topics": list(summary.weak_topics),
            }
            if summary.next_action is not None:
                data["next_action"] = summary.next_action.suggestion
            if await notify_quietly(self._notifier, "progress_reminder", email, data):
                sent += 1
        logger.info("Progress reminders sent=%d of %d", sent, len(groups))
        return sent
