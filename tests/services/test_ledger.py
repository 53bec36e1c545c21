from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from studyforge.core.errors import (
    ConflictError,
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
)
from studyforge.models.ledger import CreditCategory, CreditTransaction, TransactionType
from studyforge.repos.ledger_repo import InMemoryLedgerRepo
from studyforge.services.cache import InMemoryCacheService
from studyforge.services.ledger import CreditLedger
from tests.conftest import FakeClock


def _ledger(starting_credits: int = 5, repo=None, **kwargs) -> CreditLedger:
    return CreditLedger(
        repo or InMemoryLedgerRepo(),
        InMemoryCacheService(),
        starting_credits=starting_credits,
        clock=FakeClock(),
        **kwargs,
    )


class _OtherProcessRepo(InMemoryLedgerRepo):
    """Lets another process spend and regain a credit between our read and write.

    The balance ends where it started, so only the row version shows the
    interleaved writes.
    """

    def __init__(self) -> None:
        super().__init__()
        self.interleave = True

    async def apply_balance_change(self, email, expected_version, updated, txn):
        if self.interleave:
            self.interleave = False
            await self._write_elsewhere(email, -1, TransactionType.DEBIT)
            await self._write_elsewhere(email, 1, TransactionType.GRANT)
        return await super().apply_balance_change(email, expected_version, updated, txn)

    async def _write_elsewhere(self, email, amount, kind) -> None:
        user = await self.get_user(email)
        txn = CreditTransaction.new(
            user_email=email,
            amount=amount,
            type=kind,
            category=CreditCategory.COURSE_CREATION if amount < 0 else CreditCategory.BONUS,
            reason="other process",
            balance_before=user.credits,
            now=user.updated_at,
            seq=user.version + 1,
        )
        changed = replace(
            user,
            credits=txn.balance_after,
            total_credits_used=user.total_credits_used + max(0, -amount),
            version=user.version + 1,
        )
        assert await super().apply_balance_change(email, user.version, changed, txn)


class _LostAckRepo(InMemoryLedgerRepo):
    """Commits the first balance change but reports it as lost."""

    def __init__(self) -> None:
        super().__init__()
        self.drop_ack = True

    async def apply_balance_change(self, email, expected_version, updated, txn):
        stored = await super().apply_balance_change(email, expected_version, updated, txn)
        if self.drop_ack:
            self.drop_ack = False
            return False
        return stored


class _AlwaysLosesRepo(InMemoryLedgerRepo):
    """Another writer wins every time."""

    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0

    async def apply_balance_change(self, email, expected_version, updated, txn):
        self.attempts += 1
        return False


# ---- provisioning ----


def test_provision_grants_welcome_credits_with_opening_transaction() -> None:
    ledger = _ledger()

    async def _go():
        user, created = await ledger.provision_user("New@Example.com", "New")
        history = await ledger.get_history("new@example.com")
        return user, created, history

    user, created, history = asyncio.run(_go())
    assert created is True
    assert user.email == "new@example.com"
    assert user.credits == 5
    assert len(history) == 1
    opening = history[0]
    assert (opening.balance_before, opening.amount, opening.balance_after) == (0, 5, 5)
    assert opening.type is TransactionType.GRANT
    assert opening.category is CreditCategory.BONUS


def test_provision_is_idempotent() -> None:
    ledger = _ledger()

    async def _go():
        await ledger.provision_user("dup@example.com")
        user, created = await ledger.provision_user("dup@example.com")
        history = await ledger.get_history("dup@example.com")
        return user, created, history

    user, created, history = asyncio.run(_go())
    assert created is False
    assert user.credits == 5
    assert len(history) == 1


# ---- balance changes ----


def test_debit_and_grant_keep_the_chain() -> None:
    ledger = _ledger()

    async def _go():
        await ledger.provision_user("a@example.com")
        await ledger.debit("a@example.com", 2, "course")
        await ledger.grant("a@example.com", 3, "promo")
        await ledger.refund("a@example.com", 1, "failed course", course_id="c-1")
        return (
            await ledger.get_user("a@example.com"),
            await ledger.get_history("a@example.com"),
        )

    user, history = asyncio.run(_go())
    assert user.credits == 5 - 2 + 3 + 1
    assert user.total_credits_used == 2

    oldest_first = list(reversed(history))
    for prev, nxt in zip(oldest_first, oldest_first[1:]):
        assert prev.balance_after == nxt.balance_before
    for t in oldest_first:
        assert t.balance_after == t.balance_before + t.amount
    assert oldest_first[-1].balance_after == user.credits
    assert oldest_first[-1].category is CreditCategory.REFUND
    assert oldest_first[-1].course_id == "c-1"


def test_debit_more_than_balance_is_rejected_without_writing() -> None:
    ledger = _ledger(starting_credits=1)

    async def _go():
        await ledger.provision_user("poor@example.com")
        with pytest.raises(InsufficientCreditsError) as exc_info:
            await ledger.debit("poor@example.com", 2, "course")
        return exc_info.value, await ledger.get_history("poor@example.com")

    err, history = asyncio.run(_go())
    assert err.balance == 1
    assert err.requested == 2
    assert len(history) == 1


def test_member_balance_may_go_negative() -> None:
    ledger = _ledger(starting_credits=1)

    async def _go():
        await ledger.provision_user("member@example.com")
        await ledger.set_membership("member@example.com", True)
        await ledger.debit("member@example.com", 3, "course")
        return await ledger.get_user("member@example.com")

    user = asyncio.run(_go())
    assert user.credits == -2
    assert user.total_credits_used == 3


@pytest.mark.parametrize("amount", [0, -1, True, 1.5])
def test_non_positive_or_non_integer_amount_is_rejected(amount) -> None:
    ledger = _ledger()

    async def _go():
        await ledger.provision_user("a@example.com")
        await ledger.grant("a@example.com", amount, "bad")

    with pytest.raises(ValidationError):
        asyncio.run(_go())


def test_unknown_user_is_not_found() -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(_ledger().debit("ghost@example.com", 1, "course"))


# ---- concurrency ----


def test_concurrent_debits_never_overspend() -> None:
    """Ten parallel one-credit debits against five credits: exactly five land."""
    ledger = _ledger(starting_credits=5)

    async def _one() -> bool:
        try:
            await ledger.debit("race@example.com", 1, "course")
        except InsufficientCreditsError:
            return False
        return True

    async def _go():
        await ledger.provision_user("race@example.com")
        results = await asyncio.gather(*(_one() for _ in range(10)))
        report = await ledger.reconcile("race@example.com")
        return results, await ledger.get_user("race@example.com"), report

    results, user, report = asyncio.run(_go())
    assert sum(results) == 5
    assert user.credits == 0
    assert report.consistent
    assert report.transaction_count == 6


def test_write_after_a_balance_that_moved_away_and_back_is_retried() -> None:
    ledger = _ledger(repo=_OtherProcessRepo())

    async def _go():
        await ledger.provision_user("aba@example.com")
        await ledger.debit("aba@example.com", 1, "course")
        return (
            await ledger.get_user("aba@example.com"),
            await ledger.get_history("aba@example.com"),
            await ledger.reconcile("aba@example.com"),
        )

    user, history, report = asyncio.run(_go())
    assert user.credits == 4
    assert user.total_credits_used == 2
    assert report.consistent
    assert report.transaction_count == 4
    assert [t.reason for t in history[:3]] == ["course", "other process", "other process"]
    assert [t.seq for t in history] == [4, 3, 2, 1]


def test_write_reported_lost_but_committed_is_not_repeated() -> None:
    ledger = _ledger(repo=_LostAckRepo())

    async def _go():
        await ledger.provision_user("ack@example.com")
        await ledger.debit("ack@example.com", 1, "course")
        return (
            await ledger.get_user("ack@example.com"),
            await ledger.get_history("ack@example.com"),
        )

    user, history = asyncio.run(_go())
    assert user.credits == 4
    assert [t.type for t in history] == [TransactionType.DEBIT, TransactionType.GRANT]


def test_write_that_keeps_losing_gives_up_without_changing_the_balance() -> None:
    repo = _AlwaysLosesRepo()
    ledger = _ledger(repo=repo, max_cas_attempts=3)

    async def _go():
        await ledger.provision_user("busy@example.com")
        with pytest.raises(ConflictError):
            await ledger.debit("busy@example.com", 1, "course")
        return await ledger.get_user("busy@example.com")

    user = asyncio.run(_go())
    assert repo.attempts == 3
    assert user.credits == 5
    assert user.total_credits_used == 0


# ---- reads ----


def test_balance_is_cached_and_invalidated_on_change() -> None:
    ledger = _ledger()

    async def _go():
        await ledger.provision_user("c@example.com")
        before = await ledger.get_balance("c@example.com")
        await ledger.debit("c@example.com", 1, "course")
        after = await ledger.get_balance("c@example.com")
        return before, after

    before, after = asyncio.run(_go())
    assert before.credits == 5
    assert after.credits == 4


def test_history_limit_is_validated() -> None:
    with pytest.raises(ValidationError):
        asyncio.run(_ledger().get_history("a@example.com", limit=0))


def test_reconcile_reports_consistent_ledger() -> None:
    ledger = _ledger()

    async def _go():
        await ledger.provision_user("r@example.com")
        await ledger.debit("r@example.com", 1, "course")
        return await ledger.reconcile("r@example.com")

    report = asyncio.run(_go())
    assert report.consistent
    assert report.stored_balance == report.replayed_balance == 4
    assert report.chain_breaks == ()
