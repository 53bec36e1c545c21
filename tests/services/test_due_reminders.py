from __future__ import annotations

import asyncio

from tests.conftest import ready_course

ENROLLED = ("ada@example.com", "bo@example.com")


def _course_with_students(pipeline, model) -> tuple[str, str]:
    course_id, (assignment_id,) = ready_course(pipeline, model)

    async def _go():
        for email in ENROLLED:
            await pipeline.courses.enroll(course_id, email)

    asyncio.run(_go())
    return course_id, assignment_id


def test_students_without_a_submission_are_reminded_once(
    pipeline, model, notifier, clock
) -> None:
    course_id, assignment_id = _course_with_students(pipeline, model)
    clock.advance(days=28)

    async def _go():
        await pipeline.submissions.submit(
            assignment_id=assignment_id,
            course_id=course_id,
            student_email="ada@example.com",
            content="done early",
        )
        first = await pipeline.submissions.send_due_reminders()
        second = await pipeline.submissions.send_due_reminders()
        return first, second

    first, second = asyncio.run(_go())
    assert (first, second) == (1, 0)
    assert [(kind, to) for kind, to, _ in notifier.sent] == [
        ("assignment_due", "bo@example.com")
    ]
    assert notifier.sent[0][2]["assignment_id"] == assignment_id


def test_assignments_not_due_soon_send_nothing(pipeline, model, notifier, clock) -> None:
    _course_with_students(pipeline, model)

    async def _go():
        early = await pipeline.submissions.send_due_reminders()
        clock.advance(days=31)
        late = await pipeline.submissions.send_due_reminders()
        return early, late

    assert asyncio.run(_go()) == (0, 0)
    assert notifier.sent == []


def test_failed_delivery_is_not_counted(pipeline, model, notifier, clock) -> None:
    _course_with_students(pipeline, model)
    clock.advance(days=29)
    notifier.fail = True
    assert asyncio.run(pipeline.submissions.send_due_reminders()) == 0
