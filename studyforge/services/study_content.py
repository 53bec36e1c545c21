"""Study content generation (flashcards, quizzes, MCQs, Q&A).

request() is the synchronous half: validate, rate-limit the caller, create the
StudyTypeContent row in Generating and emit studyType.content.  The row is
what the client polls.  The job half fills it in; a duplicate delivery
finds the row no longer Generating and does nothing.
"""

from __future__ import annotations

import logging
from typing import Any

from studyforge.core.clock import Clock, utcnow
from studyforge.core.errors import DownstreamFailure, NotFoundError, ValidationError
from studyforge.models.content import ContentStatus, ContentType, StudyTypeContent
from studyforge.models.events import STUDY_CONTENT, StudyContentPayload
from studyforge.repos.content_repo import ContentRepo
from studyforge.repos.course_repo import CourseRepo
from studyforge.services.ai_model import ContentModel
from studyforge.services.dispatcher import EventBus
from studyforge.services.rate_limiter import RateLimiter, enforce

logger = logging.getLogger(__name__)

MIN_FLASHCARDS = 3


def build_prompt(
    content_type: ContentType, chapters: str, *, topic: str | None = None,
    course_details: str | None = None,
) -> str:
    if content_type is ContentType.FLASHCARD:
        return (
            f"Generate 10 flashcards on: {chapters}\n"
            'Return JSON array: [{"front":"Question?","back":"Short answer"}]\n'
            "Keep answers under 80 chars."
        )
    if content_type is ContentType.MCQ:
        context = course_details or f"{topic or 'Topic'} - {chapters}"
        return (
            f"Generate 10 MCQs on: {context}\n"
            'Return JSON: {"questions":[{"question":"?","options":["A","B","C","D"],'
            '"answer":"Correct"}]}'
        )
    if content_type is ContentType.QA:
        return (
            f"Generate 10 Q&A on: {chapters}\n"
            'Return JSON: {"questions":[{"question":"?","answer":"Detailed answer"}]}'
        )
    return f"Generate Quiz on: {chapters} with questions, options, answer in JSON (Max 10)"


def validate_flashcards(data: Any) -> list[dict[str, Any]]:
    """Keep cards with both sides; fewer than three is a failed generation."""
    if isinstance(data, dict):
        data = data.get("flashcards") or data.get("cards") or []
    if not isinstance(data, list):
        raise DownstreamFailure("flashcard output is not a list")
    cards = [
        c for c in data if isinstance(c, dict) and c.get("front") and c.get("back")
    ]
    if len(cards) < MIN_FLASHCARDS:
        raise DownstreamFailure(
            f"only {len(cards)} usable flashcards, need {MIN_FLASHCARDS}"
        )
    return cards


class StudyContentService:
    def __init__(
        self,
        repo: ContentRepo,
        courses: CourseRepo,
        bus: EventBus,
        model: ContentModel,
        limiter: RateLimiter,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._repo = repo
        self._courses = courses
        self._bus = bus
        self._model = model
        self._limiter = limiter
        self._clock = clock

    async def request(
        self,
        *,
        created_by: str,
        course_id: str,
        content_type: str,
        chapters: str,
        topic: str | None = None,
        course_details: str | None = None,
    ) -> StudyTypeContent:
        """Create the Generating row and queue the job.

        Validation runs before the rate limit.  Raises RateLimitedError before
        anything is written or queued.  If the job cannot be queued the row is
        moved to Error so it does not sit in Generating forever.
        """
        try:
            ctype = ContentType(content_type)
        except ValueError:
            raise ValidationError(
                f"type must be one of {[t.value for t in ContentType]}"
            ) from None
        if not chapters.strip():
            raise ValidationError("chapters are required")
        if await self._courses.get_course(course_id) is None:
            raise NotFoundError(f"course {course_id} not found")
        # Only well-formed requests for a real course count against the quota
        await enforce(self._limiter, created_by, "study-content")

        record = StudyTypeContent.new(
            course_id=course_id, type=ctype, created_by=created_by, now=self._clock()
        )
        await self._repo.add(record)
        try:
            await self._bus.send(
                STUDY_CONTENT,
                StudyContentPayload(
                    content_id=record.id,
                    course_id=course_id,
                    type=ctype,
                    prompt=build_prompt(
                        ctype, chapters, topic=topic, course_details=course_details
                    ),
                ),
            )
        except Exception:
            logger.exception("Could not queue study content id=%s", record.id)
            await self._repo.fail(record.id, "generation could not be queued")
            raise
        logger.info(
            "Study content requested id=%s course=%s type=%s",
            record.id,
            course_id,
            ctype.value,
        )
        return record

    async def get(self, content_id: str) -> StudyTypeContent:
        record = await self._repo.get(content_id)
        if record is None:
            raise NotFoundError(f"study content {content_id} not found")
        return record

    async def list_for_course(self, course_id: str) -> list[StudyTypeContent]:
        return await self._repo.list_for_course(course_id)

    async def handle_generate(self, payload: StudyContentPayload) -> None:
        record = await self._repo.get(payload.content_id)
        if record is None:
            logger.warning("Study content %s is gone, dropping job", payload.content_id)
            return
        if record.status != ContentStatus.GENERATING:
            logger.info(
                "Study content %s already %s, skipping", record.id, record.status.value
            )
            return

        data = await self._model.generate(payload.prompt)
        if payload.type is ContentType.FLASHCARD:
            data = validate_flashcards(data)

        if await self._repo.complete(record.id, data):
            logger.info("Study content %s ready", record.id)

    async def handle_generate_failed(
        self, payload: StudyContentPayload, exc: BaseException
    ) -> None:
        if await self._repo.fail(payload.content_id, str(exc) or type(exc).__name__):
            logger.warning("Study content %s failed: %s", payload.content_id, exc)
