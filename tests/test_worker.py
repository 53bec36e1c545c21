from __future__ import annotations

import asyncio

import pytest

from studyforge.models.course import CourseStatus
from studyforge.models.events import EVENT_SCHEMAS
from studyforge.worker import run_maintenance
from tests.conftest import provision, ready_course


def test_every_event_has_a_handler(pipeline) -> None:
    assert sorted(pipeline.bus.events) == sorted(EVENT_SCHEMAS)


def test_maintenance_reaps_stale_courses(pipeline, clock) -> None:
    provision(pipeline, "owner@example.com")

    async def _go():
        course = await pipeline.courses.create_course(
            created_by="owner@example.com", topic="Topology"
        )
        clock.advance(hours=1)
        task = asyncio.create_task(run_maintenance(pipeline, interval_seconds=60))
        for _ in range(50):
            stored = await pipeline.courses.get_course(course.course_id)
            if stored.status is not CourseStatus.GENERATING:
                break
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return await pipeline.courses.get_course(course.course_id)

    assert asyncio.run(_go()).status is CourseStatus.FAILED


def test_maintenance_survives_a_failing_sweep(pipeline, monkeypatch) -> None:
    calls = []

    async def _broken(*args, **kwargs):
        calls.append(1)
        raise RuntimeError("database went away")

    monkeypatch.setattr(pipeline.courses, "cleanup_stale_courses", _broken)

    async def _go():
        task = asyncio.create_task(run_maintenance(pipeline, interval_seconds=0))
        for _ in range(5):
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_go())
    assert len(calls) >= 2


def test_maintenance_sends_due_date_reminders(pipeline, model, notifier, clock) -> None:
    course_id, _ = ready_course(pipeline, model)

    async def _go():
        await pipeline.courses.enroll(course_id, "late@example.com")
        clock.advance(days=29)
        task = asyncio.create_task(run_maintenance(pipeline, interval_seconds=60))
        for _ in range(50):
            if notifier.sent:
                break
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_go())
    assert [(kind, to) for kind, to, _ in notifier.sent] == [
        ("assignment_due", "late@example.com")
    ]
