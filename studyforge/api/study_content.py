"""AI study content (flashcards, quizzes, MCQs, Q&A).

  POST /v1/study-content                      202: Generating row + queued job
  GET  /v1/study-content/{content_id}         poll until Ready or Error
  GET  /v1/courses/{course_id}/study-content

The study-content quota (20 per 15 minutes) is enforced by the service
before the row is created, so a 429 leaves nothing behind.
"""

from __future__ import annotations

import datetime
from typing import Any

from fastapi import APIRouter, status
from pydantic import BaseModel, ConfigDict, Field

from studyforge.api.dependencies import CurrentUser, PipelineDep
from studyforge.api.errors import http_errors
from studyforge.models.content import ContentStatus, ContentType

router = APIRouter(tags=["study-content"])


class StudyContentIn(BaseModel):
    course_id: str
    type: ContentType
    chapters: str = Field(min_length=1)
    topic: str | None = None
    course_details: str | None = None


class StudyContentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    course_id: str
    type: ContentType
    status: ContentStatus
    content: Any = None
    error: str | None = None
    created_at: datetime.datetime


@router.post(
    "/v1/study-content",
    response_model=StudyContentOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_study_content(
    body: StudyContentIn, principal: CurrentUser, pipeline: PipelineDep
) -> StudyContentOut:
    with http_errors():
        record = await pipeline.study_content.request(
            created_by=principal.user_id,
            course_id=body.course_id,
            content_type=body.type.value,
            chapters=body.chapters,
            topic=body.topic,
            course_details=body.course_details,
        )
    return StudyContentOut.model_validate(record)


@router.get("/v1/study-content/{content_id}", response_model=StudyContentOut)
async def get_study_content(
    content_id: str, _principal: CurrentUser, pipeline: PipelineDep
) -> StudyContentOut:
    with http_errors():
        record = await pipeline.study_content.get(content_id)
    return StudyContentOut.model_validate(record)


@router.get(
    "/v1/courses/{course_id}/study-content", response_model=list[StudyContentOut]
)
async def list_study_content(
    course_id: str, _principal: CurrentUser, pipeline: PipelineDep
) -> list[StudyContentOut]:
    with http_errors():
        records = await pipeline.study_content.list_for_course(course_id)
    return [StudyContentOut.model_validate(r) for r in records]
