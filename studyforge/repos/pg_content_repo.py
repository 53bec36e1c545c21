"""PostgreSQL implementation of ContentRepo."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studyforge.db.tables import StudyTypeContentRow
from studyforge.models.content import ContentStatus, ContentType, StudyTypeContent


class PgContentRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add(self, record: StudyTypeContent) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(
                StudyTypeContentRow(
                    id=record.id,
                    course_id=record.course_id,
                    type=record.type.value,
                    status=record.status.value,
                    content=record.content,
                    error=record.error,
                    created_by=record.created_by,
                    created_at=record.created_at,
                )
            )

    async def get(self, content_id: str) -> StudyTypeContent | None:
        async with self._session_factory() as session:
            row = await session.get(StudyTypeContentRow, content_id)
            return None if row is None else _row_to_content(row)

    async def complete(self, content_id: str, content: Any) -> bool:
        return await self._finish(
            content_id, status=ContentStatus.READY.value, content=content, error=None
        )

    async def fail(self, content_id: str, error: str) -> bool:
        return await self._finish(content_id, status=ContentStatus.ERROR.value, error=error)

    async def _finish(self, content_id: str, **values: Any) -> bool:
        stmt = (
            update(StudyTypeContentRow)
            .where(
                StudyTypeContentRow.id == content_id,
                StudyTypeContentRow.status == ContentStatus.GENERATING.value,
            )
            .values(**values)
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def list_for_course(self, course_id: str) -> list[StudyTypeContent]:
        stmt = (
            select(StudyTypeContentRow)
            .where(StudyTypeContentRow.course_id == course_id)
            .order_by(StudyTypeContentRow.created_at.asc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_content(r) for r in rows]


def _row_to_content(row: StudyTypeContentRow) -> StudyTypeContent:
    return StudyTypeContent(
        id=row.id,
        course_id=row.course_id,
        type=ContentType(row.type),
        status=ContentStatus(row.status),
        created_at=row.created_at,
        created_by=row.created_by,
        content=row.content,
        error=row.error,
    )
