"""Tests for the balance ledger."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from thumbs.db.models import Transaction, User
from thumbs.errors import ConflictError, NotFoundError, ValidationError
from thumbs.ledger.service import (
    apply_balance_change,
    deposit,
    get_balance_history,
    get_transactions,
)


class TestApplyBalanceChange:
    @pytest.mark.asyncio
    async def test_credit_records_post_balance(self, session_factory, make_user):
        user = await make_user("alice", balance=10)
        async with session_factory() as db:
            entry = await apply_balance_change(db, user.id, 25, "deposit", "Top up")
            await db.commit()
        assert entry.balance == 35
        assert entry.status == "completed"

    @pytest.mark.asyncio
    async def test_overdraft_rejected_without_entry(self, session_factory, make_user):
        user = await make_user("alice", balance=10)
        async with session_factory() as db:
            with pytest.raises(ConflictError) as exc:
                await apply_balance_change(db, user.id, -11, "entry_fee", "Too much")
        assert exc.value.code == "INSUFFICIENT_BALANCE"

        async with session_factory() as db:
            assert (await db.get(User, user.id)).balance == 10
            count = await db.scalar(
                select(func.count()).select_from(Transaction).where(Transaction.type == "entry_fee")
            )
        assert count == 0

    @pytest.mark.asyncio
    async def test_exact_debit_reaches_zero(self, session_factory, make_user):
        user = await make_user("alice", balance=10)
        async with session_factory() as db:
            entry = await apply_balance_change(db, user.id, -10, "entry_fee", "All in")
            await db.commit()
        assert entry.balance == 0

    @pytest.mark.asyncio
    async def test_counters_move_with_balance(self, session_factory, make_user):
        user = await make_user("alice")
        async with session_factory() as db:
            await apply_balance_change(
                db, user.id, 40, "prize", "Prize", counters={"total_earned": 40, "charts_won": 1},
            )
            await db.commit()
        async with session_factory() as db:
            refreshed = await db.get(User, user.id)
        assert (refreshed.balance, refreshed.total_earned, refreshed.charts_won) == (40, 40, 1)

    @pytest.mark.asyncio
    async def test_unknown_user(self, session_factory):
        async with session_factory() as db:
            with pytest.raises(NotFoundError):
                await apply_balance_change(db, 999, -5, "entry_fee", "Ghost")

    @pytest.mark.asyncio
    async def test_rejects_bad_arguments(self, session_factory, make_user):
        user = await make_user("alice", balance=10)
        async with session_factory() as db:
            with pytest.raises(ValueError, match="Invalid ledger type"):
                await apply_balance_change(db, user.id, 5, "gift", "Nope")
            with pytest.raises(ValueError, match="non-zero"):
                await apply_balance_change(db, user.id, 0, "deposit", "Nothing")
            with pytest.raises(ValueError, match="Unknown balance counter"):
                await apply_balance_change(db, user.id, 5, "deposit", "X", counters={"balance": 5})


class TestDeposit:
    @pytest.mark.asyncio
    async def test_deposit(self, session_factory, make_user):
        user = await make_user("alice")
        async with session_factory() as db:
            entry = await deposit(db, user.id, 500)
        assert entry.balance == 500
        assert entry.type == "deposit"

    @pytest.mark.asyncio
    async def test_deposit_limits(self, session_factory, make_user):
        user = await make_user("alice")
        async with session_factory() as db:
            with pytest.raises(ValidationError) as exc:
                await deposit(db, user.id, 0)
            assert exc.value.code == "INVALID_AMOUNT"
            with pytest.raises(ValidationError) as exc:
                await deposit(db, user.id, 10_001)
            assert exc.value.code == "ABOVE_MAXIMUM"


class TestHistory:
    @pytest.mark.asyncio
    async def test_history_sums_to_balance(self, session_factory, make_user):
        user = await make_user("alice", balance=100)
        async with session_factory() as db:
            await apply_balance_change(db, user.id, -30, "entry_fee", "Fee")
            await apply_balance_change(db, user.id, 60, "prize", "Prize")
            await apply_balance_change(db, user.id, -5, "donation", "Tip")
            await db.commit()

        async with session_factory() as db:
            history = await get_balance_history(db, user.id)
            balance = (await db.get(User, user.id)).balance

        assert [t.amount for t in history] == [100, -30, 60, -5]
        assert sum(t.amount for t in history) == balance == 125
        running = 0
        for entry in history:
            running += entry.amount
            assert entry.balance == running

    @pytest.mark.asyncio
    async def test_transactions_paginated_newest_first(self, session_factory, make_user):
        user = await make_user("alice", balance=100)
        async with session_factory() as db:
            for amount in (1, 2, 3):
                await apply_balance_change(db, user.id, amount, "deposit", f"+{amount}")
            await db.commit()

        async with session_factory() as db:
            page, total = await get_transactions(db, user.id, page=1, per_page=2)
            deposits, deposit_total = await get_transactions(db, user.id, type_="deposit")
        assert total == 4
        assert [t.amount for t in page] == [3, 2]
        assert deposit_total == 3
        assert {t.type for t in deposits} == {"deposit"}
