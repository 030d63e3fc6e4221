from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from gramledger.app.core.database_core import transaction, utcnow
from gramledger.app.core.errors_core import (
    DuplicateRewardError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from gramledger.app.core.system_locks import LockViolation
from gramledger.app.models import LedgerEntry
from gramledger.app.services.ledger_service import LedgerFilters, TaskCorrelation


async def _entries(container, account_id):
    async with container.session_factory() as session:
        stmt = select(LedgerEntry).where(LedgerEntry.account_id == account_id).order_by(LedgerEntry.id)
        return list((await session.execute(stmt)).scalars().all())


class TestApplyDelta:
    async def test_credit_then_debit_keeps_history_consistent(self, container, make_account):
        account = await make_account()
        await container.accounts.credit(account.id, 500, "deposit")
        await container.accounts.credit(account.id, 120, "task_reward", TaskCorrelation(task_id=9))
        await container.accounts.debit(account.id, 200, "task_payment")

        entries = await _entries(container, account.id)
        assert [e.kind for e in entries] == ["deposit", "task_reward", "task_payment"]
        for entry in entries:
            sign = 1 if entry.direction == "credit" else -1
            assert entry.balance_after == entry.balance_before + sign * entry.amount
        for prev, nxt in zip(entries, entries[1:]):
            assert nxt.balance_before == prev.balance_after

        fresh = await container.accounts.get_account(account.id)
        assert fresh.balance == entries[-1].balance_after == 420
        assert fresh.total_earned == 620
        assert fresh.total_spent == 200
        assert entries[1].related_task_id == 9
        assert entries[1].correlation == {"type": "task", "task_id": 9}

    async def test_debit_over_balance_changes_nothing(self, container, make_account):
        account = await make_account(balance=100)
        with pytest.raises(InsufficientBalanceError) as excinfo:
            await container.accounts.debit(account.id, 150, "withdraw")

        assert excinfo.value.details == {"account_id": account.id, "balance": 100, "requested": 150}
        assert await container.accounts.get_balance(account.id) == 100
        assert [e.kind for e in await _entries(container, account.id)] == ["deposit"]

    @pytest.mark.parametrize("amount", [0, -5, 1.5, True])
    async def test_amount_must_be_positive_integer(self, container, make_account, amount):
        account = await make_account()
        with pytest.raises(ValidationError):
            await container.accounts.credit(account.id, amount, "deposit")

    async def test_kind_must_match_operation(self, container, make_account):
        account = await make_account(balance=50)
        with pytest.raises(ValidationError):
            await container.accounts.debit(account.id, 10, "referral_reward")
        with pytest.raises(ValidationError):
            await container.accounts.credit(account.id, 10, "lottery_win")

    async def test_mutator_rejects_wrong_direction(self, container, make_account):
        account = await make_account()
        with pytest.raises(LockViolation):
            async with transaction(container.session_factory) as session:
                await container.mutator.apply_delta(session, account.id, 10, "debit", "deposit")

    async def test_unknown_account(self, container):
        with pytest.raises(NotFoundError):
            await container.accounts.credit(999_999, 10, "deposit")

    async def test_level_follows_balance(self, container, make_account):
        account = await make_account(balance=10_000)
        assert account.level == "silver"
        await container.accounts.debit(account.id, 1, "commission")
        assert (await container.accounts.get_account(account.id)).level == "bronze"

    async def test_idempotency_key_is_unique(self, container, make_account):
        account = await make_account()
        await container.accounts.credit(account.id, 10, "refund", idempotency_key="refund:1")
        with pytest.raises(DuplicateRewardError):
            await container.accounts.credit(account.id, 10, "refund", idempotency_key="refund:1")
        assert await container.accounts.get_balance(account.id) == 10

    async def test_lookup_by_idempotency_key(self, container, make_account):
        account = await make_account()
        entry = await container.accounts.credit(account.id, 10, "refund", idempotency_key="refund:2")
        async with container.session_factory() as session:
            found = await container.ledger.find_by_idempotency_key(session, "refund:2")
            missing = await container.ledger.find_by_idempotency_key(session, "refund:404")
        assert found.id == entry.id
        assert missing is None


class TestReferralCodeLookup:
    async def test_case_insensitive(self, container, make_account):
        account = await make_account()
        assert await container.accounts.resolve_referral_code(account.referral_code.lower()) == account.id
        assert await container.accounts.resolve_referral_code(f"  {account.referral_code} ") == account.id

    @pytest.mark.parametrize("code", [None, "", "ZZZZZZZZ"])
    async def test_unknown_code(self, container, make_account, code):
        await make_account()
        assert await container.accounts.resolve_referral_code(code) is None


class TestFreeze:
    async def test_freeze_and_release(self, container, make_account):
        account = await make_account(balance=300)
        frozen = await container.accounts.freeze(account.id, 200)
        assert (frozen.balance, frozen.frozen_balance) == (100, 200)

        released = await container.accounts.release(account.id, 50)
        assert (released.balance, released.frozen_balance) == (150, 150)

        entries = await _entries(container, account.id)
        assert [(e.kind, e.direction, e.amount) for e in entries] == [
            ("deposit", "credit", 300),
            ("freeze", "debit", 200),
            ("release", "credit", 50),
        ]
        assert [(e.balance_before, e.balance_after) for e in entries] == [(0, 300), (300, 100), (100, 150)]

    async def test_balance_matches_last_entry_after_reserve_moves(self, container, make_account):
        account = await make_account(balance=300)

        await container.accounts.freeze(account.id, 200)
        page = await container.accounts.get_ledger(account.id, LedgerFilters(limit=1))
        assert await container.accounts.get_balance(account.id) == page.entries[0].balance_after == 100

        await container.accounts.release(account.id, 200)
        page = await container.accounts.get_ledger(account.id, LedgerFilters(limit=1))
        assert await container.accounts.get_balance(account.id) == page.entries[0].balance_after == 300

    async def test_reserve_kinds_are_not_public(self, container, make_account):
        account = await make_account(balance=50)
        with pytest.raises(ValidationError):
            await container.accounts.debit(account.id, 10, "freeze")
        with pytest.raises(ValidationError):
            await container.accounts.credit(account.id, 10, "release")
        assert await container.accounts.get_balance(account.id) == 50

    async def test_freeze_more_than_balance(self, container, make_account):
        account = await make_account(balance=10)
        with pytest.raises(InsufficientBalanceError):
            await container.accounts.freeze(account.id, 11)

    async def test_release_more_than_frozen(self, container, make_account):
        account = await make_account(balance=10)
        await container.accounts.freeze(account.id, 5)
        with pytest.raises(ValidationError):
            await container.accounts.release(account.id, 6)
        fresh = await container.accounts.get_account(account.id)
        assert (fresh.balance, fresh.frozen_balance) == (5, 5)


class TestLedgerPages:
    async def test_cursor_walks_all_entries_newest_first(self, container, make_account):
        account = await make_account()
        for amount in range(1, 8):
            await container.accounts.credit(account.id, amount, "deposit")

        seen = []
        cursor = None
        while True:
            page = await container.accounts.get_ledger(account.id, LedgerFilters(cursor=cursor, limit=3))
            seen.extend(e.amount for e in page.entries)
            if page.next_cursor is None:
                break
            cursor = page.next_cursor

        assert seen == [7, 6, 5, 4, 3, 2, 1]

    async def test_filter_by_kind(self, container, make_account):
        account = await make_account(balance=100)
        await container.accounts.debit(account.id, 30, "commission")
        await container.accounts.credit(account.id, 5, "refund")

        page = await container.accounts.get_ledger(account.id, LedgerFilters(kinds=["commission", "refund"]))
        assert sorted(e.kind for e in page.entries) == ["commission", "refund"]
        assert page.next_cursor is None

    async def test_naive_date_bounds_are_utc(self, container, make_account):
        account = await make_account(balance=25)
        now = utcnow().replace(tzinfo=None)

        inside = await container.accounts.get_ledger(
            account.id, LedgerFilters(date_from=now - timedelta(hours=1), date_to=now + timedelta(hours=1))
        )
        later = await container.accounts.get_ledger(account.id, LedgerFilters(date_from=now + timedelta(hours=1)))

        assert [e.amount for e in inside.entries] == [25]
        assert later.entries == []

    async def test_unknown_account(self, container):
        with pytest.raises(NotFoundError):
            await container.accounts.get_ledger(424242)

    async def test_balance_equals_last_entry(self, container, make_account):
        account = await make_account()
        for amount, kind in [(40, "deposit"), (15, "commission"), (7, "check_received")]:
            if kind == "commission":
                await container.accounts.debit(account.id, amount, kind)
            else:
                await container.accounts.credit(account.id, amount, kind)
        page = await container.accounts.get_ledger(account.id, LedgerFilters(limit=1))
        async with container.session_factory() as session:
            count = (
                await session.execute(
                    select(func.count()).select_from(LedgerEntry).where(LedgerEntry.account_id == account.id)
                )
            ).scalar_one()
        assert count == 3
        assert await container.accounts.get_balance(account.id) == page.entries[0].balance_after == 32
