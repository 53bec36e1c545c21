from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Protocol

from studyforge.models.ledger import CreditTransaction
from studyforge.models.user import User


class LedgerRepo(Protocol):
    async def get_user(self, email: str) -> User | None: ...

    async def create_user(
        self, user: User, opening: CreditTransaction | None = None
    ) -> bool:
        """Insert the user (and its opening transaction) unless the email exists."""
        ...

    async def apply_balance_change(
        self, email: str, expected_version: int, updated: User, txn: CreditTransaction
    ) -> bool:
        """Store `updated` and append `txn` only if the row is still at expected_version.

        `updated.version` and `txn.seq` are expected_version + 1.  Both writes
        happen or neither does.  Returns False when another writer touched
        the row first, even if it left the balance where it was.
        """
        ...

    async def set_membership(
        self, email: str, is_member: bool, now: datetime
    ) -> User | None:
        """Flip membership and bump the row version."""
        ...

    async def list_transactions(
        self, email: str, limit: int | None = None, newest_first: bool = True
    ) -> list[CreditTransaction]:
        """Ordered by seq."""
        ...


class InMemoryLedgerRepo:
    def __init__(self) -> None:
        self._users: dict[str, User] = {}
        self._transactions: dict[str, list[CreditTransaction]] = {}

    async def get_user(self, email: str) -> User | None:
        return self._users.get(email)

    async def create_user(
        self, user: User, opening: CreditTransaction | None = None
    ) -> bool:
        if user.email in self._users:
            return False
        self._users[user.email] = user
        self._transactions[user.email] = [opening] if opening is not None else []
        return True

    async def apply_balance_change(
        self, email: str, expected_version: int, updated: User, txn: CreditTransaction
    ) -> bool:
        current = self._users.get(email)
        if current is None or current.version != expected_version:
            return False
        self._users[email] = replace(updated, version=expected_version + 1)
        self._transactions.setdefault(email, []).append(txn)
        return True

    async def set_membership(
        self, email: str, is_member: bool, now: datetime
    ) -> User | None:
        u = self._users.get(email)
        if u is None:
            return None
        updated = replace(u, is_member=is_member, updated_at=now, version=u.version + 1)
        self._users[email] = updated
        return updated

    async def list_transactions(
        self, email: str, limit: int | None = None, newest_first: bool = True
    ) -> list[CreditTransaction]:
        txns = sorted(self._transactions.get(email, []), key=lambda t: t.seq)
        if newest_first:
            txns.reverse()
        return txns if limit is None else txns[:limit]
