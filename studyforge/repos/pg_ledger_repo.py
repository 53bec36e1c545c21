"""PostgreSQL implementation of LedgerRepo."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studyforge.db.tables import CreditTransactionRow, UserRow
from studyforge.models.ledger import CreditCategory, CreditTransaction, TransactionType
from studyforge.models.user import User


class PgLedgerRepo:
    """Satisfies the LedgerRepo Protocol.

    Each method runs in its own transaction.  The balance update is a
    conditional UPDATE on the previously read row version, so two workers
    that read the same row cannot both write it, even when a third writer
    moved the balance away and back in between.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_user(self, email: str) -> User | None:
        async with self._session_factory() as session:
            stmt = select(UserRow).where(UserRow.email == email)
            row = (await session.execute(stmt)).scalar_one_or_none()
            return None if row is None else _row_to_user(row)

    async def create_user(
        self, user: User, opening: CreditTransaction | None = None
    ) -> bool:
        async with self._session_factory() as session, session.begin():
            stmt = (
                insert(UserRow)
                .values(
                    email=user.email,
                    name=user.name,
                    credits=user.credits,
                    total_credits_used=user.total_credits_used,
                    is_member=user.is_member,
                    created_at=user.created_at,
                    updated_at=user.updated_at,
                    version=user.version,
                )
                .on_conflict_do_nothing(index_elements=[UserRow.email])
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                return False
            if opening is not None:
                session.add(_txn_to_row(opening))
        return True

    async def apply_balance_change(
        self, email: str, expected_version: int, updated: User, txn: CreditTransaction
    ) -> bool:
        async with self._session_factory() as session, session.begin():
            stmt = (
                update(UserRow)
                .where(UserRow.email == email, UserRow.version == expected_version)
                .values(
                    credits=updated.credits,
                    total_credits_used=updated.total_credits_used,
                    updated_at=updated.updated_at,
                    version=expected_version + 1,
                )
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                return False
            session.add(_txn_to_row(txn))
        return True

    async def set_membership(
        self, email: str, is_member: bool, now: datetime
    ) -> User | None:
        async with self._session_factory() as session, session.begin():
            stmt = (
                update(UserRow)
                .where(UserRow.email == email)
                .values(is_member=is_member, updated_at=now, version=UserRow.version + 1)
                .returning(UserRow)
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            return None if row is None else _row_to_user(row)

    async def list_transactions(
        self, email: str, limit: int | None = None, newest_first: bool = True
    ) -> list[CreditTransaction]:
        order = (
            CreditTransactionRow.seq.desc() if newest_first else CreditTransactionRow.seq.asc()
        )
        stmt = (
            select(CreditTransactionRow)
            .where(CreditTransactionRow.user_email == email)
            .order_by(order)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_txn(r) for r in rows]


def _row_to_user(row: UserRow) -> User:
    return User(
        email=row.email,
        name=row.name or "",
        credits=row.credits,
        total_credits_used=row.total_credits_used,
        is_member=row.is_member,
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version,
    )


def _txn_to_row(txn: CreditTransaction) -> CreditTransactionRow:
    return CreditTransactionRow(
        id=txn.id,
        user_email=txn.user_email,
        amount=txn.amount,
        type=txn.type.value,
        category=txn.category.value,
        reason=txn.reason,
        balance_before=txn.balance_before,
        balance_after=txn.balance_after,
        course_id=txn.course_id,
        created_by=txn.created_by,
        created_at=txn.created_at,
        seq=txn.seq,
    )


def _row_to_txn(row: CreditTransactionRow) -> CreditTransaction:
    return CreditTransaction(
        id=row.id,
        user_email=row.user_email,
        amount=row.amount,
        type=TransactionType(row.type),
        category=CreditCategory(row.category),
        reason=row.reason,
        balance_before=row.balance_before,
        balance_after=row.balance_after,
        created_at=row.created_at,
        course_id=row.course_id,
        created_by=row.created_by,
        seq=row.seq,
    )
