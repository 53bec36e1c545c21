from __future__ import annotations

import asyncio

import pytest

from studyforge.core.errors import (
    DownstreamFailure,
    NotFoundError,
    RateLimitedError,
    ValidationError,
)
from studyforge.models.content import ContentStatus, ContentType
from studyforge.models.events import STUDY_CONTENT
from studyforge.services.study_content import build_prompt, validate_flashcards
from tests.conftest import ready_course

STUDENT = "student@example.com"
CARDS = [{"front": f"Q{i}?", "back": f"A{i}"} for i in range(5)]


def _request(
    pipeline, course_id: str, content_type: str = "Flashcard", chapters: str = "Vectors"
):
    return pipeline.study_content.request(
        created_by=STUDENT,
        course_id=course_id,
        content_type=content_type,
        chapters=chapters,
    )


# ---- prompts and validation ----


def test_prompt_depends_on_type() -> None:
    assert "flashcards" in build_prompt(ContentType.FLASHCARD, "Vectors")
    assert "MCQs" in build_prompt(ContentType.MCQ, "Vectors", topic="Algebra")
    assert "Algebra - Vectors" in build_prompt(ContentType.MCQ, "Vectors", topic="Algebra")
    assert "Q&A" in build_prompt(ContentType.QA, "Vectors")
    assert "Quiz" in build_prompt(ContentType.QUIZ, "Vectors")


def test_validate_flashcards_drops_incomplete_cards() -> None:
    cards = validate_flashcards(CARDS + [{"front": "no back"}, "junk"])
    assert len(cards) == 5


def test_validate_flashcards_accepts_wrapped_list() -> None:
    assert len(validate_flashcards({"flashcards": CARDS})) == 5
    assert len(validate_flashcards({"cards": CARDS[:3]})) == 3


def test_too_few_flashcards_is_a_failed_generation() -> None:
    with pytest.raises(DownstreamFailure):
        validate_flashcards(CARDS[:2])
    with pytest.raises(DownstreamFailure):
        validate_flashcards("not cards")


# ---- request and job ----


def test_request_creates_generating_row_and_job(pipeline, model) -> None:
    course_id, _ = ready_course(pipeline, model)

    async def _go():
        record = await _request(pipeline, course_id)
        return record, await pipeline.queue.queue_length(STUDY_CONTENT)

    record, queued = asyncio.run(_go())
    assert record.status is ContentStatus.GENERATING
    assert record.content is None
    assert queued == 1


def test_job_fills_content(pipeline, model) -> None:
    course_id, _ = ready_course(pipeline, model)
    model.script(CARDS + [{"front": "broken"}])

    async def _go():
        record = await _request(pipeline, course_id)
        await pipeline.bus.drain()
        return await pipeline.study_content.get(record.id)

    stored = asyncio.run(_go())
    assert stored.status is ContentStatus.READY
    assert stored.content == CARDS


def test_non_flashcard_content_is_stored_as_returned(pipeline, model) -> None:
    course_id, _ = ready_course(pipeline, model)
    questions = {"questions": [{"question": "2+2?", "answer": "4"}]}
    model.script(questions)

    async def _go():
        await _request(pipeline, course_id, "qa")
        await pipeline.bus.drain()
        return await pipeline.study_content.list_for_course(course_id)

    (stored,) = asyncio.run(_go())
    assert stored.type is ContentType.QA
    assert stored.content == questions


def test_failed_generation_marks_row_error(pipeline, model) -> None:
    course_id, _ = ready_course(pipeline, model)
    model.default = [{"front": "only one", "back": "card"}]

    async def _go():
        record = await _request(pipeline, course_id)
        await pipeline.bus.drain()
        return await pipeline.study_content.get(record.id)

    stored = asyncio.run(_go())
    assert stored.status is ContentStatus.ERROR
    assert "flashcards" in stored.error


def test_unknown_type_or_course_is_rejected(pipeline, model) -> None:
    course_id, _ = ready_course(pipeline, model)
    with pytest.raises(ValidationError):
        asyncio.run(_request(pipeline, course_id, "Essay"))
    with pytest.raises(ValidationError):
        asyncio.run(_request(pipeline, course_id, chapters="  "))
    with pytest.raises(NotFoundError):
        asyncio.run(_request(pipeline, "missing-course"))


def test_twenty_first_request_is_limited_before_anything_is_queued(
    pipeline, model
) -> None:
    course_id, _ = ready_course(pipeline, model)

    async def _go():
        for _ in range(20):
            await _request(pipeline, course_id)
        queued_before = await pipeline.queue.queue_length(STUDY_CONTENT)
        with pytest.raises(RateLimitedError) as exc_info:
            await _request(pipeline, course_id)
        return (
            queued_before,
            await pipeline.queue.queue_length(STUDY_CONTENT),
            await pipeline.study_content.list_for_course(course_id),
            exc_info.value,
        )

    before, after, rows, err = asyncio.run(_go())
    assert before == after == 20
    assert len(rows) == 20
    assert err.retry_after > 0


def test_rejected_requests_do_not_use_up_the_content_quota(pipeline, model) -> None:
    course_id, _ = ready_course(pipeline, model)

    async def _go():
        for _ in range(25):
            with pytest.raises(ValidationError):
                await _request(pipeline, course_id, "Essay")
        for _ in range(5):
            with pytest.raises(NotFoundError):
                await _request(pipeline, "missing-course")
        return await _request(pipeline, course_id)

    assert asyncio.run(_go()).status is ContentStatus.GENERATING


def test_row_is_failed_when_the_job_cannot_be_queued(pipeline, model, monkeypatch) -> None:
    course_id, _ = ready_course(pipeline, model)

    async def _queue_down(event, payload):
        raise ConnectionError("queue unavailable")

    monkeypatch.setattr(pipeline.bus, "send", _queue_down)

    async def _go():
        with pytest.raises(ConnectionError):
            await _request(pipeline, course_id)
        return await pipeline.study_content.list_for_course(course_id)

    (row,) = asyncio.run(_go())
    assert row.status is ContentStatus.ERROR
    assert row.error == "generation could not be queued"
