from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import uuid4


class TransactionType(str, Enum):
    GRANT = "grant"
    DEBIT = "debit"


class CreditCategory(str, Enum):
    COURSE_CREATION = "course_creation"
    REFUND = "refund"
    PURCHASE = "purchase"
    BONUS = "bonus"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    MEMBERSHIP_BONUS = "membership_bonus"


@dataclass(frozen=True, slots=True)
class CreditTransaction:
    """Append-only ledger row.

    Chain invariant per user, in seq order:
        balance_after[i] == balance_before[i] + amount[i] == balance_before[i+1]

    `seq` is the user row version this entry produced.  It only grows, so it
    orders the log even when clocks on two workers disagree.
    """

    id: str
    user_email: str
    amount: int  # signed: grants positive, debits negative
    type: TransactionType
    category: CreditCategory
    reason: str
    balance_before: int
    balance_after: int
    created_at: datetime
    course_id: str | None = None
    created_by: str | None = None
    seq: int = 0

    @staticmethod
    def new(
        *,
        user_email: str,
        amount: int,
        type: TransactionType,
        category: CreditCategory,
        reason: str,
        balance_before: int,
        now: datetime,
        course_id: str | None = None,
        created_by: str | None = None,
        seq: int = 0,
    ) -> CreditTransaction:
        return CreditTransaction(
            id=str(uuid4()),
            user_email=user_email,
            amount=amount,
            type=type,
            category=category,
            reason=reason,
            balance_before=balance_before,
            balance_after=balance_before + amount,
            created_at=now,
            course_id=course_id,
            created_by=created_by,
            seq=seq,
        )


@dataclass(frozen=True, slots=True)
class ReconciliationReport:
    user_email: str
    stored_balance: int
    replayed_balance: int
    transaction_count: int
    chain_breaks: tuple[str, ...] = ()  # ids of rows whose balance_before skips

    @property
    def consistent(self) -> bool:
        return self.stored_balance == self.replayed_balance and not self.chain_breaks


@dataclass(frozen=True, slots=True)
class CreditBalance:
    """Cached read model of a user's spendable credits."""

    user_email: str
    credits: int
    total_credits_used: int
    is_member: bool
