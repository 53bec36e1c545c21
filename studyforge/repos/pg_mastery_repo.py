"""PostgreSQL implementation of MasteryRepo."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studyforge.db.tables import AdaptivePerformanceRow
from studyforge.models.mastery import AdaptivePerformance

_KEY_COLUMNS = ("course_id", "student_email", "topic_id")


class PgMasteryRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(
        self, course_id: str, student_email: str, topic_id: str
    ) -> AdaptivePerformance | None:
        async with self._session_factory() as session:
            row = await session.get(
                AdaptivePerformanceRow, (course_id, student_email, topic_id)
            )
            return None if row is None else _row_to_record(row)

    async def upsert(self, record: AdaptivePerformance) -> None:
        values = {
            "course_id": record.course_id,
            "student_email": record.student_email,
            "topic_id": record.topic_id,
            "topic_name": record.topic_name,
            "total_attempts": record.total_attempts,
            "average_score": record.average_score,
            "last_score": record.last_score,
            "current_difficulty": record.current_difficulty,
            "recommended_difficulty": record.recommended_difficulty,
            "mastery_level": record.mastery_level,
            "is_weak_topic": record.is_weak_topic,
            "updated_at": record.updated_at,
        }
        stmt = insert(AdaptivePerformanceRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[
                AdaptivePerformanceRow.course_id,
                AdaptivePerformanceRow.student_email,
                AdaptivePerformanceRow.topic_id,
            ],
            set_={k: v for k, v in values.items() if k not in _KEY_COLUMNS},
        )
        async with self._session_factory() as session, session.begin():
            await session.execute(stmt)

    async def list_for_student(
        self, course_id: str, student_email: str
    ) -> list[AdaptivePerformance]:
        stmt = select(AdaptivePerformanceRow).where(
            AdaptivePerformanceRow.course_id == course_id,
            AdaptivePerformanceRow.student_email == student_email,
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_record(r) for r in rows]

    async def list_all(self) -> list[AdaptivePerformance]:
        async with self._session_factory() as session:
            rows = (await session.execute(select(AdaptivePerformanceRow))).scalars().all()
            return [_row_to_record(r) for r in rows]


def _row_to_record(row: AdaptivePerformanceRow) -> AdaptivePerformance:
    return AdaptivePerformance(
        course_id=row.course_id,
        student_email=row.student_email,
        topic_id=row.topic_id,
        topic_name=row.topic_name,
        total_attempts=row.total_attempts,
        average_score=row.average_score,
        last_score=row.last_score,
        current_difficulty=row.current_difficulty,  # type: ignore[arg-type]
        recommended_difficulty=row.recommended_difficulty,  # type: ignore[arg-type]
        mastery_level=row.mastery_level,  # type: ignore[arg-type]
        is_weak_topic=row.is_weak_topic,
        updated_at=row.updated_at,
    )
