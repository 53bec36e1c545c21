"""PostgreSQL implementation of CourseRepo."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studyforge.db.tables import (
    AssignmentReminderRow,
    CourseAssignmentRow,
    CourseEnrollmentRow,
    CourseRow,
)
from studyforge.models.course import (
    Course,
    CourseAssignment,
    CourseStatus,
    Enrollment,
)


class PgCourseRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add_course(self, course: Course) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(
                CourseRow(
                    course_id=course.course_id,
                    created_by=course.created_by,
                    topic=course.topic,
                    course_type=course.course_type,
                    difficulty=course.difficulty,
                    status=course.status.value,
                    created_at=course.created_at,
                )
            )

    async def get_course(self, course_id: str) -> Course | None:
        async with self._session_factory() as session:
            row = await session.get(CourseRow, course_id)
            return None if row is None else _row_to_course(row)

    async def transition_course(
        self, course_id: str, from_status: CourseStatus, to_status: CourseStatus
    ) -> bool:
        stmt = (
            update(CourseRow)
            .where(CourseRow.course_id == course_id, CourseRow.status == from_status.value)
            .values(status=to_status.value)
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def list_courses(
        self,
        status: CourseStatus | None = None,
        created_before: datetime | None = None,
    ) -> list[Course]:
        stmt = select(CourseRow).order_by(CourseRow.created_at.asc())
        if status is not None:
            stmt = stmt.where(CourseRow.status == status.value)
        if created_before is not None:
            stmt = stmt.where(CourseRow.created_at < created_before)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_course(r) for r in rows]

    async def enroll(self, enrollment: Enrollment) -> Enrollment:
        stmt = (
            insert(CourseEnrollmentRow)
            .values(
                course_id=enrollment.course_id,
                student_email=enrollment.student_email,
                enrolled_at=enrollment.enrolled_at,
            )
            .on_conflict_do_nothing()
        )
        async with self._session_factory() as session, session.begin():
            await session.execute(stmt)
            row = await session.get(
                CourseEnrollmentRow, (enrollment.course_id, enrollment.student_email)
            )
            assert row is not None
            return Enrollment(
                course_id=row.course_id,
                student_email=row.student_email,
                enrolled_at=row.enrolled_at,
            )

    async def latest_enrollment(self, course_id: str) -> datetime | None:
        stmt = select(func.max(CourseEnrollmentRow.enrolled_at)).where(
            CourseEnrollmentRow.course_id == course_id
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def list_enrollments(self, course_id: str) -> list[Enrollment]:
        stmt = (
            select(CourseEnrollmentRow)
            .where(CourseEnrollmentRow.course_id == course_id)
            .order_by(CourseEnrollmentRow.enrolled_at.asc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [
                Enrollment(
                    course_id=r.course_id,
                    student_email=r.student_email,
                    enrolled_at=r.enrolled_at,
                )
                for r in rows
            ]

    async def add_assignments(self, assignments: list[CourseAssignment]) -> None:
        async with self._session_factory() as session, session.begin():
            session.add_all(
                CourseAssignmentRow(
                    assignment_id=a.assignment_id,
                    course_id=a.course_id,
                    title=a.title,
                    description=a.description,
                    rubric=a.rubric,
                    total_points=a.total_points,
                    due_date=a.due_date,
                    created_at=a.created_at,
                )
                for a in assignments
            )

    async def get_assignment(self, assignment_id: str) -> CourseAssignment | None:
        async with self._session_factory() as session:
            row = await session.get(CourseAssignmentRow, assignment_id)
            return None if row is None else _row_to_assignment(row)

    async def list_assignments(
        self, course_id: str | None = None
    ) -> list[CourseAssignment]:
        stmt = select(CourseAssignmentRow).order_by(CourseAssignmentRow.created_at.asc())
        if course_id is not None:
            stmt = stmt.where(CourseAssignmentRow.course_id == course_id)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_assignment(r) for r in rows]

    async def set_due_date(self, assignment_id: str, due_date: datetime) -> None:
        stmt = (
            update(CourseAssignmentRow)
            .where(CourseAssignmentRow.assignment_id == assignment_id)
            .values(due_date=due_date)
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise KeyError("assignment not found")

    async def claim_reminder(
        self, assignment_id: str, student_email: str, now: datetime
    ) -> bool:
        stmt = (
            insert(AssignmentReminderRow)
            .values(assignment_id=assignment_id, student_email=student_email, sent_at=now)
            .on_conflict_do_nothing()
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
            return result.rowcount == 1


def _row_to_course(row: CourseRow) -> Course:
    return Course(
        course_id=row.course_id,
        created_by=row.created_by,
        topic=row.topic,
        course_type=row.course_type,
        difficulty=row.difficulty,
        status=CourseStatus(row.status),
        created_at=row.created_at,
    )


def _row_to_assignment(row: CourseAssignmentRow) -> CourseAssignment:
    return CourseAssignment(
        assignment_id=row.assignment_id,
        course_id=row.course_id,
        title=row.title,
        description=row.description,
        due_date=row.due_date,
        created_at=row.created_at,
        total_points=row.total_points,
        rubric=dict(row.rubric or {}),
    )
