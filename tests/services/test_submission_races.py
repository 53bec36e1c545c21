"""Submission writes that lose a compare-and-set to another writer.

The service re-reads and re-applies its transition; these doubles let a
second writer land between the read and the write.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest

from studyforge.core.errors import ConflictError, InvalidStateTransition
from studyforge.models.course import CourseAssignment
from studyforge.models.submission import SubmissionStatus as S
from studyforge.repos.course_repo import InMemoryCourseRepo
from studyforge.repos.submission_repo import InMemorySubmissionRepo
from studyforge.services.dispatcher import EventBus
from studyforge.services.submissions import SubmissionService, parse_grade
from studyforge.services.task_queue import InMemoryTaskQueue
from tests.conftest import START, FakeClock, RecordingNotifier, ScriptedModel

STUDENT = "student@example.com"


class _RacingRepo(InMemorySubmissionRepo):
    """Applies `other` to the stored row right before our next write."""

    def __init__(self) -> None:
        super().__init__()
        self.other = None
        self.writes = 0

    async def compare_and_set(self, updated, expected_version):
        self.writes += 1
        if self.other is not None:
            other, self.other = self.other, None
            current = await self.get(updated.assignment_id, updated.student_email)
            assert await super().compare_and_set(other(current), current.version)
        return await super().compare_and_set(updated, expected_version)


class _AlwaysLosesRepo(InMemorySubmissionRepo):
    def __init__(self) -> None:
        super().__init__()
        self.writes = 0

    async def compare_and_set(self, updated, expected_version):
        self.writes += 1
        return None


def _service(repo, clock: FakeClock, **kwargs) -> tuple[SubmissionService, str]:
    courses = InMemoryCourseRepo()
    assignment = CourseAssignment.new(
        course_id="c-1",
        title="Sets",
        description="Explain sets.",
        due_date=START + timedelta(days=30),
        now=START,
    )
    asyncio.run(courses.add_assignments([assignment]))
    service = SubmissionService(
        repo,
        courses,
        EventBus(InMemoryTaskQueue(), backoff_seconds=0),
        ScriptedModel(),
        RecordingNotifier(),
        clock=clock,
        **kwargs,
    )
    return service, assignment.assignment_id


def _submit(service: SubmissionService, assignment_id: str):
    return service.submit(
        assignment_id=assignment_id,
        course_id="c-1",
        student_email=STUDENT,
        content="answer",
    )


def test_same_decision_by_another_admin_first_is_kept() -> None:
    clock = FakeClock()
    repo = _RacingRepo()
    service, assignment_id = _service(repo, clock)
    clock.advance(days=31)

    async def _go():
        await _submit(service, assignment_id)
        repo.other = lambda cur: replace(
            cur, status=S.UNLOCKED, decided_by="first@example.com", decided_at=clock()
        )
        return await service.decide_unlock(assignment_id, STUDENT, True, "second@example.com")

    sub = asyncio.run(_go())
    assert sub.status is S.UNLOCKED
    assert sub.decided_by == "first@example.com"
    assert repo.writes == 1


def test_opposite_decision_landing_first_rejects_ours() -> None:
    clock = FakeClock()
    repo = _RacingRepo()
    service, assignment_id = _service(repo, clock)
    clock.advance(days=31)

    async def _go():
        await _submit(service, assignment_id)
        repo.other = lambda cur: replace(
            cur, status=S.UNLOCK_DENIED, decided_by="first@example.com", decided_at=clock()
        )
        with pytest.raises(InvalidStateTransition) as exc_info:
            await service.decide_unlock(assignment_id, STUDENT, True, "second@example.com")
        return exc_info.value, await service.get(assignment_id, STUDENT)

    err, stored = asyncio.run(_go())
    assert err.current_status == "UnlockDenied"
    assert stored.status is S.UNLOCK_DENIED
    assert stored.decided_by == "first@example.com"


def test_grade_is_reapplied_after_an_unrelated_write() -> None:
    clock = FakeClock()
    repo = _RacingRepo()
    service, assignment_id = _service(repo, clock)

    async def _go():
        await _submit(service, assignment_id)
        repo.other = lambda cur: replace(cur, feedback="seen by a reviewer")
        return await service.record_ai_grade(
            assignment_id, STUDENT, parse_grade({"score": 91, "feedback": "Good."})
        )

    sub = asyncio.run(_go())
    assert sub.status is S.GRADED
    assert sub.score == 91
    assert sub.feedback == "Good."
    assert repo.writes == 2


def test_write_that_keeps_losing_raises_conflict() -> None:
    clock = FakeClock()
    repo = _AlwaysLosesRepo()
    service, assignment_id = _service(repo, clock, max_cas_attempts=3)

    async def _go():
        await _submit(service, assignment_id)
        with pytest.raises(ConflictError):
            await service.mark_grading_failed(assignment_id, STUDENT)
        return await service.get(assignment_id, STUDENT)

    stored = asyncio.run(_go())
    assert repo.writes == 3
    assert stored.status is S.SUBMITTED
