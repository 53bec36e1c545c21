"""PostgreSQL implementation of CertificateRepo."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studyforge.db.tables import CertificateRow
from studyforge.models.certificate import Certificate


class PgCertificateRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add(self, certificate: Certificate) -> Certificate:
        stmt = (
            insert(CertificateRow)
            .values(
                certificate_id=certificate.certificate_id,
                course_id=certificate.course_id,
                student_email=certificate.student_email,
                student_name=certificate.student_name,
                course_name=certificate.course_name,
                final_score=certificate.final_score,
                issued_at=certificate.issued_at,
            )
            .on_conflict_do_nothing(
                index_elements=[CertificateRow.course_id, CertificateRow.student_email]
            )
        )
        async with self._session_factory() as session, session.begin():
            await session.execute(stmt)
            row = (
                await session.execute(
                    select(CertificateRow).where(
                        CertificateRow.course_id == certificate.course_id,
                        CertificateRow.student_email == certificate.student_email,
                    )
                )
            ).scalar_one()
            return _row_to_certificate(row)

    async def get(self, certificate_id: str) -> Certificate | None:
        async with self._session_factory() as session:
            row = await session.get(CertificateRow, certificate_id)
            return None if row is None else _row_to_certificate(row)

    async def get_for(self, course_id: str, student_email: str) -> Certificate | None:
        stmt = select(CertificateRow).where(
            CertificateRow.course_id == course_id,
            CertificateRow.student_email == student_email,
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return None if row is None else _row_to_certificate(row)

    async def list_for_student(self, student_email: str) -> list[Certificate]:
        stmt = (
            select(CertificateRow)
            .where(CertificateRow.student_email == student_email)
            .order_by(CertificateRow.issued_at.asc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_certificate(r) for r in rows]


def _row_to_certificate(row: CertificateRow) -> Certificate:
    return Certificate(
        certificate_id=row.certificate_id,
        course_id=row.course_id,
        student_email=row.student_email,
        student_name=row.student_name,
        course_name=row.course_name,
        final_score=row.final_score,
        issued_at=row.issued_at,
    )
