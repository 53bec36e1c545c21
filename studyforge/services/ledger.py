"""Credit ledger: the only writer of User.credits.

Every balance change is one atomic storage call that both updates the user
row and appends a CreditTransaction whose balance_before/balance_after come
from the same read.  The update is a compare-and-swap on the user row
version, so concurrent debits from several API instances or workers
serialize in storage: the loser re-reads and re-checks.  A balance that
another writer moved away and back still counts as changed.  Within
one process a per-user asyncio.Lock keeps same-user calls from racing at
all.

Members bypass the insufficient-credits check and their balance may go
negative; the transaction chain still holds for them.

History is for display and audit.  Nothing here ever derives a balance
from the log except reconcile(), which only reports.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import asdict, replace

from studyforge.core.clock import Clock, utcnow
from studyforge.core.errors import (
    ConflictError,
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
)
from studyforge.core.metrics import LEDGER_ENTRIES
from studyforge.models.ledger import (
    CreditBalance,
    CreditCategory,
    CreditTransaction,
    ReconciliationReport,
    TransactionType,
)
from studyforge.models.user import User
from studyforge.repos.ledger_repo import LedgerRepo
from studyforge.services.cache import CacheService, CacheTTL, get_or_set_json, invalidate

logger = logging.getLogger(__name__)

MAX_HISTORY = 500


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _validate_amount(amount: int) -> None:
    # bool is an int subclass; True is not a credit amount
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"amount must be a positive integer (got {amount!r})")


class CreditLedger:
    def __init__(
        self,
        repo: LedgerRepo,
        cache: CacheService,
        *,
        starting_credits: int = 5,
        clock: Clock = utcnow,
        max_cas_attempts: int = 5,
    ) -> None:
        self._repo = repo
        self._cache = cache
        self._starting_credits = starting_credits
        self._clock = clock
        self._max_cas_attempts = max_cas_attempts
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def provision_user(self, email: str, name: str = "") -> tuple[User, bool]:
        """Create the user with the welcome grant.  Idempotent.

        Returns (user, created).  The user row and its opening 0 -> N
        transaction are written together.
        """
        email = normalize_email(email)
        existing = await self._repo.get_user(email)
        if existing is not None:
            return existing, False

        now = self._clock()
        user = User.new(email=email, name=name, now=now)
        opening = None
        if self._starting_credits > 0:
            opening = CreditTransaction.new(
                user_email=email,
                amount=self._starting_credits,
                type=TransactionType.GRANT,
                category=CreditCategory.BONUS,
                reason="Welcome bonus",
                balance_before=0,
                now=now,
                created_by="system",
                seq=1,
            )
            user = replace(user, credits=opening.balance_after, version=1)

        if not await self._repo.create_user(user, opening):
            # Lost the race to a duplicate delivery of the same event
            stored = await self._repo.get_user(email)
            if stored is None:
                raise ConflictError(f"user {email} vanished during provisioning")
            return stored, False

        if opening is not None:
            LEDGER_ENTRIES.labels(type=TransactionType.GRANT.value).inc()
        logger.info("Provisioned user=%s credits=%d", email, user.credits)
        await invalidate(self._cache, f"user:{email}:*")
        return user, True

    async def get_user(self, email: str) -> User:
        user = await self._repo.get_user(normalize_email(email))
        if user is None:
            raise NotFoundError(f"user {email} not found")
        return user

    async def set_membership(self, email: str, is_member: bool) -> User:
        email = normalize_email(email)
        async with self._locks[email]:
            user = await self._repo.set_membership(email, is_member, self._clock())
        if user is None:
            raise NotFoundError(f"user {email} not found")
        logger.info("Membership user=%s is_member=%s", email, is_member)
        await invalidate(self._cache, f"user:{email}:*")
        return user

    # ------------------------------------------------------------------
    # Balance changes
    # ------------------------------------------------------------------

    async def grant(
        self,
        email: str,
        amount: int,
        reason: str,
        *,
        category: CreditCategory = CreditCategory.BONUS,
        course_id: str | None = None,
        created_by: str | None = None,
    ) -> CreditTransaction:
        return await self._apply(
            email, amount, TransactionType.GRANT, category, reason, course_id, created_by
        )

    async def debit(
        self,
        email: str,
        amount: int,
        reason: str,
        *,
        category: CreditCategory = CreditCategory.COURSE_CREATION,
        course_id: str | None = None,
        created_by: str | None = None,
    ) -> CreditTransaction:
        """Spend credits.  Raises InsufficientCreditsError for non-members."""
        return await self._apply(
            email, amount, TransactionType.DEBIT, category, reason, course_id, created_by
        )

    async def refund(
        self, email: str, amount: int, reason: str, *, course_id: str | None = None
    ) -> CreditTransaction:
        return await self.grant(
            email,
            amount,
            reason,
            category=CreditCategory.REFUND,
            course_id=course_id,
            created_by="system",
        )

    async def _apply(
        self,
        email: str,
        amount: int,
        type: TransactionType,
        category: CreditCategory,
        reason: str,
        course_id: str | None,
        created_by: str | None,
    ) -> CreditTransaction:
        _validate_amount(amount)
        email = normalize_email(email)

        async with self._locks[email]:
            for _ in range(self._max_cas_attempts):
                user = await self._repo.get_user(email)
                if user is None:
                    raise NotFoundError(f"user {email} not found")

                if type is TransactionType.DEBIT:
                    if not user.is_member and amount > user.credits:
                        logger.warning(
                            "Debit rejected user=%s balance=%d requested=%d",
                            email,
                            user.credits,
                            amount,
                        )
                        raise InsufficientCreditsError(user.credits, amount)
                    signed = -amount
                    used = user.total_credits_used + amount
                else:
                    signed = amount
                    used = user.total_credits_used

                now = self._clock()
                txn = CreditTransaction.new(
                    user_email=email,
                    amount=signed,
                    type=type,
                    category=category,
                    reason=reason,
                    balance_before=user.credits,
                    now=now,
                    course_id=course_id,
                    created_by=created_by,
                    seq=user.version + 1,
                )
                updated = replace(
                    user,
                    credits=txn.balance_after,
                    total_credits_used=used,
                    updated_at=now,
                    version=user.version + 1,
                )
                if await self._repo.apply_balance_change(
                    email, user.version, updated, txn
                ) or await self._landed(email, txn):
                    break
                logger.info("Balance of user=%s changed concurrently, re-reading", email)
            else:
                raise ConflictError(
                    f"could not update credits for {email} after "
                    f"{self._max_cas_attempts} attempts"
                )

        LEDGER_ENTRIES.labels(type=type.value).inc()
        logger.info(
            "Ledger %s user=%s amount=%d balance=%d->%d category=%s",
            type.value,
            email,
            txn.amount,
            txn.balance_before,
            txn.balance_after,
            category.value,
        )
        await invalidate(self._cache, f"user:{email}:*")
        return txn

    async def _landed(self, email: str, txn: CreditTransaction) -> bool:
        # A retried storage call can report failure for a write that did
        # commit; the transaction id tells us.
        latest = await self._repo.list_transactions(email, limit=1)
        return bool(latest) and latest[0].id == txn.id

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_balance(self, email: str) -> CreditBalance:
        email = normalize_email(email)

        async def _load() -> dict:
            user = await self._repo.get_user(email)
            if user is None:
                raise NotFoundError(f"user {email} not found")
            return asdict(
                CreditBalance(
                    user_email=user.email,
                    credits=user.credits,
                    total_credits_used=user.total_credits_used,
                    is_member=user.is_member,
                )
            )

        data = await get_or_set_json(
            self._cache,
            f"user:{email}:credits",
            CacheTTL.SHORT,
            _load,
            scope=f"user:{email}:*",
        )
        return CreditBalance(**data)

    async def get_history(self, email: str, limit: int = 50) -> list[CreditTransaction]:
        """Most recent transactions first."""
        if not 1 <= limit <= MAX_HISTORY:
            raise ValidationError(f"limit must be between 1 and {MAX_HISTORY}")
        return await self._repo.list_transactions(
            normalize_email(email), limit=limit, newest_first=True
        )

    async def reconcile(self, email: str) -> ReconciliationReport:
        """Replay the log oldest-first and compare with the stored balance."""
        user = await self.get_user(email)
        txns = await self._repo.list_transactions(user.email, newest_first=False)

        running = 0
        breaks: list[str] = []
        for t in txns:
            if t.balance_before != running or t.balance_after != t.balance_before + t.amount:
                breaks.append(t.id)
            running += t.amount

        report = ReconciliationReport(
            user_email=user.email,
            stored_balance=user.credits,
            replayed_balance=running,
            transaction_count=len(txns),
            chain_breaks=tuple(breaks),
        )
        if not report.consistent:
            logger.warning(
                "Ledger mismatch user=%s stored=%d replayed=%d breaks=%d",
                user.email,
                report.stored_balance,
                report.replayed_balance,
                len(breaks),
            )
        return report
