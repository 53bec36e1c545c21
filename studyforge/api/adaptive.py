"""Adaptive mastery: record quiz results, read the study recommendation.

  POST /v1/courses/{course_id}/assessments   record one topic score
  GET  /v1/courses/{course_id}/mastery       summary + next action (cached)
  GET  /v1/courses/{course_id}/topics        per-topic performance rows
  POST /v1/admin/progress-reminders          send reminder notifications
"""

from __future__ import annotations

import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from studyforge.api.dependencies import AdminUser, CurrentUser, PipelineDep
from studyforge.api.errors import http_errors
from studyforge.api.ratelimit import require_rate_limit

router = APIRouter(tags=["adaptive"])


class AssessmentIn(BaseModel):
    topic_id: str = Field(min_length=1)
    topic_name: str = ""
    score: float = Field(ge=0, le=100)


class TopicPerformanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    topic_id: str
    topic_name: str
    total_attempts: int
    average_score: float
    last_score: float
    current_difficulty: str
    recommended_difficulty: str
    mastery_level: str
    is_weak_topic: bool
    updated_at: datetime.datetime


class NextActionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    topic_id: str
    topic_name: str
    recommended_difficulty: str
    average_score: float
    is_weak_topic: bool
    suggestion: str


class MasterySummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    overall_mastery: int
    topics_mastered: int
    topics_weak: int
    weak_topics: list[str]
    next_action: NextActionOut | None


class RemindersOut(BaseModel):
    sent: int


@router.post(
    "/v1/courses/{course_id}/assessments",
    response_model=TopicPerformanceOut,
    dependencies=[Depends(require_rate_limit())],
)
async def record_assessment(
    course_id: str, body: AssessmentIn, principal: CurrentUser, pipeline: PipelineDep
) -> TopicPerformanceOut:
    with http_errors():
        record = await pipeline.mastery.record_assessment(
            course_id, principal.user_id, body.topic_id, body.topic_name, body.score
        )
    return TopicPerformanceOut.model_validate(record)


@router.get("/v1/courses/{course_id}/mastery", response_model=MasterySummaryOut)
async def get_mastery(
    course_id: str, principal: CurrentUser, pipeline: PipelineDep
) -> MasterySummaryOut:
    with http_errors():
        summary = await pipeline.mastery.get_summary(course_id, principal.user_id)
    return MasterySummaryOut.model_validate(summary)


@router.get("/v1/courses/{course_id}/topics", response_model=list[TopicPerformanceOut])
async def list_topics(
    course_id: str, principal: CurrentUser, pipeline: PipelineDep
) -> list[TopicPerformanceOut]:
    with http_errors():
        records = await pipeline.mastery.list_topics(course_id, principal.user_id)
    return [TopicPerformanceOut.model_validate(r) for r in records]


@router.post("/v1/admin/progress-reminders", response_model=RemindersOut)
async def send_progress_reminders(_admin: AdminUser, pipeline: PipelineDep) -> RemindersOut:
    with http_errors():
        sent = await pipeline.mastery.send_progress_reminders()
    return RemindersOut(sent=sent)
