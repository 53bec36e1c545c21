"""Leaderboard.

  GET /v1/leaderboard?limit=10&include_anonymous=true   public, cached
  PUT /v1/leaderboard/me                                report own stats

Anonymous students appear as "Anonymous Learner"; the stored name is
untouched and shows again if they turn anonymity off.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from studyforge.api.dependencies import CurrentUser, PipelineDep
from studyforge.api.errors import http_errors
from studyforge.api.ratelimit import require_rate_limit

router = APIRouter(prefix="/v1/leaderboard", tags=["leaderboard"])


class LeaderboardRowOut(BaseModel):
    rank: int | None
    badge: str | None
    student_name: str
    is_anonymous: bool
    total_points: int
    total_courses_completed: int
    average_rating: float


class EntryIn(BaseModel):
    student_name: str | None = None
    total_points: int | None = Field(default=None, ge=0)
    total_courses_completed: int | None = Field(default=None, ge=0)
    average_rating: float | None = Field(default=None, ge=0, le=5)
    is_anonymous: bool | None = None


@router.get(
    "",
    response_model=list[LeaderboardRowOut],
    dependencies=[Depends(require_rate_limit())],
)
async def get_leaderboard(
    pipeline: PipelineDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    include_anonymous: bool = True,
) -> list[LeaderboardRowOut]:
    with http_errors():
        rows = await pipeline.leaderboard.get_leaderboard(limit, include_anonymous)
    return [LeaderboardRowOut(**r) for r in rows]


@router.put("/me", response_model=LeaderboardRowOut)
async def update_my_entry(
    body: EntryIn, principal: CurrentUser, pipeline: PipelineDep
) -> LeaderboardRowOut:
    with http_errors():
        entry = await pipeline.leaderboard.update_entry(
            principal.user_id,
            student_name=body.student_name or principal.name or None,
            total_points=body.total_points,
            total_courses_completed=body.total_courses_completed,
            average_rating=body.average_rating,
            is_anonymous=body.is_anonymous,
        )
    return LeaderboardRowOut(
        rank=entry.rank,
        badge=entry.badge,
        student_name=entry.display_name,
        is_anonymous=entry.is_anonymous,
        total_points=entry.total_points,
        total_courses_completed=entry.total_courses_completed,
        average_rating=entry.average_rating,
    )
