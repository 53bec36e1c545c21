from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Protocol

from studyforge.models.course import (
    Course,
    CourseAssignment,
    CourseStatus,
    Enrollment,
)


class CourseRepo(Protocol):
    async def add_course(self, course: Course) -> None: ...
    async def get_course(self, course_id: str) -> Course | None: ...

    async def transition_course(
        self, course_id: str, from_status: CourseStatus, to_status: CourseStatus
    ) -> bool:
        """Move the course to to_status only if it is currently in from_status."""
        ...

    async def list_courses(
        self,
        status: CourseStatus | None = None,
        created_before: datetime | None = None,
    ) -> list[Course]: ...

    async def enroll(self, enrollment: Enrollment) -> Enrollment:
        """Insert if absent; returns the stored enrollment either way."""
        ...

    async def latest_enrollment(self, course_id: str) -> datetime | None: ...

    async def list_enrollments(self, course_id: str) -> list[Enrollment]: ...

    async def add_assignments(self, assignments: list[CourseAssignment]) -> None: ...
    async def get_assignment(self, assignment_id: str) -> CourseAssignment | None: ...

    async def list_assignments(
        self, course_id: str | None = None
    ) -> list[CourseAssignment]: ...

    async def set_due_date(self, assignment_id: str, due_date: datetime) -> None: ...

    async def claim_reminder(
        self, assignment_id: str, student_email: str, now: datetime
    ) -> bool:
        """Record a due-date reminder.  False if one was already recorded."""
        ...


class InMemoryCourseRepo:
    def __init__(self) -> None:
        self._courses: dict[str, Course] = {}
        self._enrollments: dict[tuple[str, str], Enrollment] = {}
        self._assignments: dict[str, CourseAssignment] = {}
        self._reminders: dict[tuple[str, str], datetime] = {}

    async def add_course(self, course: Course) -> None:
        if course.course_id in self._courses:
            raise ValueError("course already exists")
        self._courses[course.course_id] = course

    async def get_course(self, course_id: str) -> Course | None:
        return self._courses.get(course_id)

    async def transition_course(
        self, course_id: str, from_status: CourseStatus, to_status: CourseStatus
    ) -> bool:
        c = self._courses.get(course_id)
        if c is None or c.status != from_status:
            return False
        self._courses[course_id] = replace(c, status=to_status)
        return True

    async def list_courses(
        self,
        status: CourseStatus | None = None,
        created_before: datetime | None = None,
    ) -> list[Course]:
        courses = list(self._courses.values())
        if status is not None:
            courses = [c for c in courses if c.status == status]
        if created_before is not None:
            courses = [c for c in courses if c.created_at < created_before]
        return sorted(courses, key=lambda c: c.created_at)

    async def enroll(self, enrollment: Enrollment) -> Enrollment:
        key = (enrollment.course_id, enrollment.student_email)
        return self._enrollments.setdefault(key, enrollment)

    async def latest_enrollment(self, course_id: str) -> datetime | None:
        dates = [
            e.enrolled_at for e in self._enrollments.values() if e.course_id == course_id
        ]
        return max(dates) if dates else None

    async def list_enrollments(self, course_id: str) -> list[Enrollment]:
        items = [e for e in self._enrollments.values() if e.course_id == course_id]
        return sorted(items, key=lambda e: e.enrolled_at)

    async def add_assignments(self, assignments: list[CourseAssignment]) -> None:
        for a in assignments:
            self._assignments[a.assignment_id] = a

    async def get_assignment(self, assignment_id: str) -> CourseAssignment | None:
        return self._assignments.get(assignment_id)

    async def list_assignments(
        self, course_id: str | None = None
    ) -> list[CourseAssignment]:
        items = [
            a
            for a in self._assignments.values()
            if course_id is None or a.course_id == course_id
        ]
        return sorted(items, key=lambda a: a.created_at)

    async def set_due_date(self, assignment_id: str, due_date: datetime) -> None:
        a = self._assignments.get(assignment_id)
        if a is None:
            raise KeyError("assignment not found")
        self._assignments[assignment_id] = replace(a, due_date=due_date)

    async def claim_reminder(
        self, assignment_id: str, student_email: str, now: datetime
    ) -> bool:
        key = (assignment_id, student_email)
        if key in self._reminders:
            return False
        self._reminders[key] = now
        return True
