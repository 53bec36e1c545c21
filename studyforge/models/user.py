from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class User:
    """A learner or instructor, keyed by email.

    `credits` and `total_credits_used` are written only by the CreditLedger;
    every change to them is paired with exactly one CreditTransaction.
    """

    email: str
    name: str
    credits: int
    total_credits_used: int
    is_member: bool
    created_at: datetime
    updated_at: datetime
    # Bumped by every write to the row; the ledger compare-and-swaps on it
    version: int = 0

    @staticmethod
    def new(*, email: str, name: str, now: datetime) -> User:
        # Starts empty; the welcome grant is the first ledger entry.
        return User(
            email=email.strip().lower(),
            name=name,
            credits=0,
            total_credits_used=0,
            is_member=False,
            created_at=now,
            updated_at=now,
            version=0,
        )
