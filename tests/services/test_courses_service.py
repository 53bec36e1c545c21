from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from studyforge.core.errors import (
    DownstreamFailure,
    InsufficientCreditsError,
    RateLimitedError,
    TransientStorageError,
    ValidationError,
)
from studyforge.models.course import CourseStatus
from studyforge.models.events import ASSIGNMENTS_GENERATE
from studyforge.models.ledger import CreditCategory
from studyforge.services.courses import DUE_AFTER, due_date_for
from tests.conftest import START, ready_course

OWNER = "owner@example.com"


def _create(pipeline, topic: str = "Graph Theory"):
    async def _go():
        await pipeline.ledger.provision_user(OWNER)
        return await pipeline.courses.create_course(created_by=OWNER, topic=topic)

    return asyncio.run(_go())


# ---- due dates ----


def test_due_date_is_thirty_days_after_creation_without_enrollment() -> None:
    assert due_date_for(START, None) == START + DUE_AFTER


def test_due_date_follows_the_latest_enrollment() -> None:
    enrolled = START + timedelta(days=10)
    assert due_date_for(START, enrolled) == START + timedelta(days=40)


def test_enrollment_before_creation_does_not_move_due_date() -> None:
    assert due_date_for(START, START - timedelta(days=2)) == START + DUE_AFTER


# ---- creation ----


def test_create_course_debits_one_credit_and_queues_generation(pipeline) -> None:
    course = _create(pipeline)

    async def _check():
        return (
            await pipeline.ledger.get_user(OWNER),
            await pipeline.queue.queue_length(ASSIGNMENTS_GENERATE),
        )

    user, queued = asyncio.run(_check())
    assert course.status is CourseStatus.GENERATING
    assert user.credits == 4
    assert queued == 1


def test_generation_job_makes_course_ready(pipeline, model) -> None:
    course_id, assignment_ids = ready_course(pipeline, model, owner=OWNER, assignments=2)

    async def _check():
        return (
            await pipeline.courses.get_course(course_id),
            await pipeline.courses.list_assignments(course_id),
        )

    course, assignments = asyncio.run(_check())
    assert course.status is CourseStatus.READY
    assert len(assignment_ids) == 2
    assert all(a.due_date == START + DUE_AFTER for a in assignments)
    assert assignments[0].rubric == {"accuracy": 60, "clarity": 40}


def test_unusable_model_answer_falls_back_to_default_assignment(pipeline, model) -> None:
    model.script({"unexpected": "shape"})
    course = _create(pipeline, topic="Chemistry")

    async def _go():
        await pipeline.bus.drain()
        return await pipeline.courses.list_assignments(course.course_id)

    assignments = asyncio.run(_go())
    assert [a.title for a in assignments] == ["Chapter Review Assignment"]
    assert "Chemistry" in assignments[0].description


def test_failed_generation_marks_error_and_refunds(pipeline, model) -> None:
    model.default = DownstreamFailure("model down")
    course = _create(pipeline)

    async def _go():
        await pipeline.bus.drain()
        return (
            await pipeline.courses.get_course(course.course_id),
            await pipeline.ledger.get_user(OWNER),
            await pipeline.ledger.get_history(OWNER),
        )

    stored, user, history = asyncio.run(_go())
    assert stored.status is CourseStatus.ERROR
    assert user.credits == 5
    assert history[0].category is CreditCategory.REFUND
    assert history[0].course_id == course.course_id
    # one prompt per attempt
    assert len(model.prompts) == pipeline.settings.job_max_attempts


def test_create_course_without_credits_writes_nothing(pipeline) -> None:
    async def _go():
        await pipeline.ledger.provision_user(OWNER)
        await pipeline.ledger.debit(OWNER, 4, "earlier purchase")
        await pipeline.courses.create_course(created_by=OWNER, topic="Topic")
        with pytest.raises(InsufficientCreditsError):
            await pipeline.courses.create_course(created_by=OWNER, topic="One more")
        return await pipeline.queue.queue_length(ASSIGNMENTS_GENERATE)

    assert asyncio.run(_go()) == 1


def test_course_generation_quota_is_checked_before_debit(pipeline) -> None:
    async def _go():
        await pipeline.ledger.provision_user(OWNER)
        await pipeline.ledger.set_membership(OWNER, True)
        for _ in range(5):
            await pipeline.courses.create_course(created_by=OWNER, topic="Topic")
        with pytest.raises(RateLimitedError) as exc_info:
            await pipeline.courses.create_course(created_by=OWNER, topic="Sixth")
        return exc_info.value, await pipeline.ledger.get_user(OWNER)

    err, user = asyncio.run(_go())
    assert err.retry_after > 0
    assert user.credits == 0
    assert user.total_credits_used == 5


def test_blank_topic_is_rejected(pipeline) -> None:
    with pytest.raises(ValidationError):
        _create(pipeline, topic="   ")


def test_malformed_requests_do_not_use_up_the_generation_quota(pipeline) -> None:
    async def _go():
        await pipeline.ledger.provision_user(OWNER)
        for _ in range(10):
            with pytest.raises(ValidationError):
                await pipeline.courses.create_course(
                    created_by=OWNER, topic="Topic", difficulty="Impossible"
                )
        return await pipeline.courses.create_course(created_by=OWNER, topic="Topic")

    assert asyncio.run(_go()).status is CourseStatus.GENERATING


def test_course_that_cannot_be_saved_is_refunded(pipeline, monkeypatch) -> None:
    async def _unavailable(course):
        raise TransientStorageError("database unavailable")

    monkeypatch.setattr(pipeline.courses._repo, "add_course", _unavailable)

    async def _go():
        await pipeline.ledger.provision_user(OWNER)
        with pytest.raises(TransientStorageError):
            await pipeline.courses.create_course(created_by=OWNER, topic="Topic")
        return (
            await pipeline.ledger.get_user(OWNER),
            await pipeline.ledger.get_history(OWNER),
            await pipeline.ledger.reconcile(OWNER),
            await pipeline.queue.queue_length(ASSIGNMENTS_GENERATE),
        )

    user, history, report, queued = asyncio.run(_go())
    assert user.credits == 5
    assert [t.category for t in history[:2]] == [
        CreditCategory.REFUND,
        CreditCategory.COURSE_CREATION,
    ]
    assert history[0].course_id == history[1].course_id
    assert report.consistent
    assert queued == 0


# ---- enrollment ----


def test_enrollment_moves_due_dates(pipeline, model, clock) -> None:
    course_id, _ = ready_course(pipeline, model, owner=OWNER)
    clock.advance(days=10)

    async def _go():
        await pipeline.courses.enroll(course_id, "Late@Example.com")
        first = await pipeline.courses.list_assignments(course_id)
        clock.advance(days=1)
        # enrolling twice keeps the original enrollment and its due date
        await pipeline.courses.enroll(course_id, "late@example.com")
        second = await pipeline.courses.list_assignments(course_id)
        return first, second

    first, second = asyncio.run(_go())
    assert first[0].due_date == START + timedelta(days=40)
    assert second[0].due_date == START + timedelta(days=40)


def test_recompute_due_dates_reports_nothing_when_current(pipeline, model) -> None:
    ready_course(pipeline, model, owner=OWNER)
    assert asyncio.run(pipeline.courses.recompute_due_dates()) == 0


# ---- stale cleanup ----


def test_stale_generating_course_is_failed_and_refunded_once(pipeline, clock) -> None:
    course = _create(pipeline)
    clock.advance(minutes=31)

    async def _go():
        reaped = await pipeline.courses.cleanup_stale_courses()
        again = await pipeline.courses.cleanup_stale_courses()
        # the queued job arrives late and must not resurrect the course
        await pipeline.bus.drain()
        return (
            reaped,
            again,
            await pipeline.courses.get_course(course.course_id),
            await pipeline.courses.list_assignments(course.course_id),
            await pipeline.ledger.get_user(OWNER),
        )

    reaped, again, stored, assignments, user = asyncio.run(_go())
    assert reaped == [course.course_id]
    assert again == []
    assert stored.status is CourseStatus.FAILED
    assert assignments == []
    assert user.credits == 5


def test_recent_generating_course_is_left_alone(pipeline, clock) -> None:
    _create(pipeline)
    clock.advance(minutes=5)
    assert asyncio.run(pipeline.courses.cleanup_stale_courses()) == []
