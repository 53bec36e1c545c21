"""PostgreSQL implementation of LeaderboardRepo."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studyforge.db.tables import LeaderboardRow
from studyforge.models.leaderboard import LeaderboardEntry


class PgLeaderboardRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, student_email: str) -> LeaderboardEntry | None:
        async with self._session_factory() as session:
            row = await session.get(LeaderboardRow, student_email)
            return None if row is None else _row_to_entry(row)

    async def upsert(self, entry: LeaderboardEntry) -> None:
        values = {
            "student_email": entry.student_email,
            "student_name": entry.student_name,
            "total_points": entry.total_points,
            "total_courses_completed": entry.total_courses_completed,
            "average_rating": entry.average_rating,
            "is_anonymous": entry.is_anonymous,
            "rank": entry.rank,
            "badge": entry.badge,
            "achieved_at": entry.achieved_at,
            "updated_at": entry.updated_at,
        }
        stmt = insert(LeaderboardRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[LeaderboardRow.student_email],
            set_={k: v for k, v in values.items() if k != "student_email"},
        )
        async with self._session_factory() as session, session.begin():
            await session.execute(stmt)

    async def list_all(self) -> list[LeaderboardEntry]:
        async with self._session_factory() as session:
            rows = (await session.execute(select(LeaderboardRow))).scalars().all()
            return [_row_to_entry(r) for r in rows]

    async def save_ranks(self, ranks: dict[str, tuple[int, str | None]]) -> None:
        async with self._session_factory() as session, session.begin():
            for email, (rank, badge) in ranks.items():
                await session.execute(
                    update(LeaderboardRow)
                    .where(LeaderboardRow.student_email == email)
                    .values(rank=rank, badge=badge)
                )


def _row_to_entry(row: LeaderboardRow) -> LeaderboardEntry:
    return LeaderboardEntry(
        student_email=row.student_email,
        student_name=row.student_name,
        total_points=row.total_points,
        total_courses_completed=row.total_courses_completed,
        average_rating=row.average_rating,
        is_anonymous=row.is_anonymous,
        achieved_at=row.achieved_at,
        updated_at=row.updated_at,
        rank=row.rank,
        badge=row.badge,
    )
