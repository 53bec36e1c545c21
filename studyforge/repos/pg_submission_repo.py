"""PostgreSQL implementation of SubmissionRepo."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studyforge.db.tables import AssignmentSubmissionRow
from studyforge.models.submission import AssignmentSubmission, SubmissionStatus


class PgSubmissionRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(
        self, assignment_id: str, student_email: str
    ) -> AssignmentSubmission | None:
        stmt = select(AssignmentSubmissionRow).where(
            AssignmentSubmissionRow.assignment_id == assignment_id,
            AssignmentSubmissionRow.student_email == student_email,
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return None if row is None else _row_to_submission(row)

    async def get_by_id(self, submission_id: str) -> AssignmentSubmission | None:
        stmt = select(AssignmentSubmissionRow).where(
            AssignmentSubmissionRow.id == submission_id
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return None if row is None else _row_to_submission(row)

    async def add(self, submission: AssignmentSubmission) -> bool:
        stmt = (
            insert(AssignmentSubmissionRow)
            .values(**_submission_values(submission), id=submission.id)
            .on_conflict_do_nothing(
                index_elements=[
                    AssignmentSubmissionRow.assignment_id,
                    AssignmentSubmissionRow.student_email,
                ]
            )
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def compare_and_set(
        self, updated: AssignmentSubmission, expected_version: int
    ) -> AssignmentSubmission | None:
        values = _submission_values(updated)
        values["version"] = expected_version + 1
        stmt = (
            update(AssignmentSubmissionRow)
            .where(
                AssignmentSubmissionRow.assignment_id == updated.assignment_id,
                AssignmentSubmissionRow.student_email == updated.student_email,
                AssignmentSubmissionRow.version == expected_version,
            )
            .values(**values)
            .returning(AssignmentSubmissionRow)
        )
        async with self._session_factory() as session, session.begin():
            row = (await session.execute(stmt)).scalar_one_or_none()
            return None if row is None else _row_to_submission(row)

    async def list_by_status(
        self, status: SubmissionStatus, limit: int = 100
    ) -> list[AssignmentSubmission]:
        stmt = (
            select(AssignmentSubmissionRow)
            .where(AssignmentSubmissionRow.status == status.value)
            .order_by(AssignmentSubmissionRow.submitted_at.asc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_submission(r) for r in rows]


def _submission_values(s: AssignmentSubmission) -> dict:
    return {
        "assignment_id": s.assignment_id,
        "course_id": s.course_id,
        "student_email": s.student_email,
        "content": s.content,
        "submission_type": s.submission_type,
        "language": s.language,
        "status": s.status.value,
        "score": s.score,
        "feedback": s.feedback,
        "strengths": list(s.strengths),
        "improvements": list(s.improvements),
        "graded_by": s.graded_by,
        "graded_at": s.graded_at,
        "unlock_reason": s.unlock_reason,
        "review_requested": s.review_requested,
        "decided_by": s.decided_by,
        "decided_at": s.decided_at,
        "submitted_at": s.submitted_at,
        "version": s.version,
    }


def _row_to_submission(row: AssignmentSubmissionRow) -> AssignmentSubmission:
    return AssignmentSubmission(
        id=row.id,
        assignment_id=row.assignment_id,
        course_id=row.course_id,
        student_email=row.student_email,
        content=row.content,
        submission_type=row.submission_type,
        status=SubmissionStatus(row.status),
        submitted_at=row.submitted_at,
        language=row.language,
        score=row.score,
        feedback=row.feedback,
        strengths=tuple(row.strengths or ()),
        improvements=tuple(row.improvements or ()),
        graded_by=row.graded_by,
        graded_at=row.graded_at,
        unlock_reason=row.unlock_reason,
        review_requested=row.review_requested,
        decided_by=row.decided_by,
        decided_at=row.decided_at,
        version=row.version,
    )
