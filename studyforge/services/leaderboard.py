"""Leaderboard ranker.

Ranks are recomputed over the whole board after every update and stored
with the entries, so reads never sort.  Ordering is total_points
descending; ties go to whoever reached the score first (achieved_at), then
to the email, which makes ranks deterministic across instances.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any

from studyforge.core.clock import Clock, utcnow
from studyforge.core.errors import ValidationError
from studyforge.models.leaderboard import LeaderboardEntry
from studyforge.repos.leaderboard_repo import LeaderboardRepo
from studyforge.services.cache import CacheService, CacheTTL, get_or_set_json, invalidate

logger = logging.getLogger(__name__)

BADGES = {1: "gold", 2: "silver", 3: "bronze"}
MAX_LIMIT = 100


def rank_entries(entries: list[LeaderboardEntry]) -> list[LeaderboardEntry]:
    ordered = sorted(
        entries, key=lambda e: (-e.total_points, e.achieved_at, e.student_email)
    )
    return [
        replace(e, rank=i, badge=BADGES.get(i)) for i, e in enumerate(ordered, start=1)
    ]


def _public(entry: LeaderboardEntry) -> dict[str, Any]:
    return {
        "rank": entry.rank,
        "badge": entry.badge,
        "student_name": entry.display_name,
        "is_anonymous": entry.is_anonymous,
        "total_points": entry.total_points,
        "total_courses_completed": entry.total_courses_completed,
        "average_rating": entry.average_rating,
    }


class LeaderboardService:
    def __init__(
        self, repo: LeaderboardRepo, cache: CacheService, *, clock: Clock = utcnow
    ) -> None:
        self._repo = repo
        self._cache = cache
        self._clock = clock
        self._lock = asyncio.Lock()

    async def update_entry(
        self,
        student_email: str,
        *,
        student_name: str | None = None,
        total_points: int | None = None,
        total_courses_completed: int | None = None,
        average_rating: float | None = None,
        is_anonymous: bool | None = None,
    ) -> LeaderboardEntry:
        """Merge the non-empty fields into the entry and re-rank the board."""
        if total_points is not None and total_points < 0:
            raise ValidationError("total_points must be >= 0")

        async with self._lock:
            now = self._clock()
            prev = await self._repo.get(student_email)
            if prev is None:
                entry = LeaderboardEntry(
                    student_email=student_email,
                    student_name=student_name or student_email.split("@")[0],
                    total_points=total_points or 0,
                    total_courses_completed=total_courses_completed or 0,
                    average_rating=average_rating or 0.0,
                    is_anonymous=bool(is_anonymous),
                    achieved_at=now,
                    updated_at=now,
                )
            else:
                # zero and None mean "not reported"; keep what is stored
                points = total_points or prev.total_points
                entry = replace(
                    prev,
                    student_name=student_name or prev.student_name,
                    total_points=points,
                    total_courses_completed=total_courses_completed
                    or prev.total_courses_completed,
                    average_rating=average_rating or prev.average_rating,
                    is_anonymous=prev.is_anonymous if is_anonymous is None else is_anonymous,
                    achieved_at=now if points != prev.total_points else prev.achieved_at,
                    updated_at=now,
                )
            await self._repo.upsert(entry)

            ranked = rank_entries(await self._repo.list_all())
            await self._repo.save_ranks({e.student_email: (e.rank, e.badge) for e in ranked})

        result = next(e for e in ranked if e.student_email == student_email)
        logger.info(
            "Leaderboard student=%s points=%d rank=%s",
            student_email,
            result.total_points,
            result.rank,
        )
        await invalidate(self._cache, "leaderboard:*")
        return result

    async def get_leaderboard(
        self, limit: int = 10, include_anonymous: bool = True
    ) -> list[dict[str, Any]]:
        """Public projection; anonymous students are masked, never renamed."""
        if not 1 <= limit <= MAX_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}")

        async def _load() -> list[dict[str, Any]]:
            entries = sorted(
                (e for e in await self._repo.list_all() if e.rank is not None),
                key=lambda e: e.rank,
            )
            if not include_anonymous:
                entries = [e for e in entries if not e.is_anonymous]
            return [_public(e) for e in entries[:limit]]

        flag = "all" if include_anonymous else "named"
        return await get_or_set_json(
            self._cache,
            f"leaderboard:top:{limit}:{flag}",
            CacheTTL.MEDIUM,
            _load,
            scope="leaderboard:*",
        )

    async def get_entry(self, student_email: str) -> LeaderboardEntry | None:
        return await self._repo.get(student_email)
