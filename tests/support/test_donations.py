"""Tests for donations and shoutouts."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from thumbs.charts.service import create_chart, get_chart
from thumbs.db.models import Donation, Notification, Transaction, User
from thumbs.errors import ConflictError, NotFoundError, ValidationError
from thumbs.ledger.service import get_entries_for_reference
from thumbs.support.service import donate, shoutout


@pytest.fixture
def make_chart(session_factory, make_user):
    async def _make():
        host = await make_user("host", balance=0)
        async with session_factory() as db:
            return await create_chart(db, host.id, title="Showcase", game="chess", entry_fee=0)

    return _make


class TestDonate:
    @pytest.mark.asyncio
    async def test_balances_move_and_ledger_pairs(self, session_factory, registry, connect, received, make_user, make_chart):
        chart = await make_chart()
        a = await make_user("alice", balance=100)
        b = await make_user("bob", balance=50, display_name="Bob")
        bob_ws = connect(b.id)

        async with session_factory() as db:
            donation = await donate(db, registry, a.id, chart.id, b.id, 30, "  go bob  ")
        await registry.flush()

        assert donation.status == "completed"
        assert donation.message == "go bob"
        assert donation.transaction_id.startswith("DON-")
        async with session_factory() as db:
            alice = await db.get(User, a.id)
            bob = await db.get(User, b.id)
            entries = await get_entries_for_reference(db, "donation", donation.id)
            refreshed = await get_chart(db, chart.id)
        assert (alice.balance, bob.balance) == (70, 80)
        assert (alice.total_supported, bob.total_earned) == (30, 30)
        assert [(e.user_id, e.amount, e.balance) for e in entries] == [(a.id, -30, 70), (b.id, 30, 80)]
        assert refreshed.total_donations == 30

        pushed = [m for m in received(bob_ws) if m["type"] == "notification"]
        assert pushed[0]["notification"]["type"] == "donation"
        assert pushed[0]["notification"]["data"]["amount"] == 30

    @pytest.mark.asyncio
    async def test_insufficient_balance_writes_nothing(self, session_factory, registry, make_user, make_chart):
        chart = await make_chart()
        a = await make_user("alice", balance=20)
        b = await make_user("bob")

        async with session_factory() as db:
            with pytest.raises(ConflictError) as exc:
                await donate(db, registry, a.id, chart.id, b.id, 30)
        assert exc.value.code == "INSUFFICIENT_BALANCE"

        async with session_factory() as db:
            assert await db.scalar(select(func.count()).select_from(Donation)) == 0
            assert await db.scalar(select(func.count()).select_from(Notification)) == 0
            assert (await db.get(User, a.id)).balance == 20

    @pytest.mark.parametrize(("amount", "code"), [(0, "INVALID_AMOUNT"), (-5, "INVALID_AMOUNT"), (5, "BELOW_MINIMUM")])
    @pytest.mark.asyncio
    async def test_amount_validation(self, session_factory, registry, make_user, make_chart, amount, code):
        chart = await make_chart()
        a = await make_user("alice", balance=100)
        b = await make_user("bob")
        async with session_factory() as db:
            with pytest.raises(ValidationError) as exc:
                await donate(db, registry, a.id, chart.id, b.id, amount)
        assert exc.value.code == code

    @pytest.mark.asyncio
    async def test_self_donation_rejected(self, session_factory, registry, make_user, make_chart):
        chart = await make_chart()
        a = await make_user("alice", balance=100)
        async with session_factory() as db:
            with pytest.raises(ValidationError) as exc:
                await donate(db, registry, a.id, chart.id, a.id, 20)
        assert exc.value.code == "SELF_DONATION"

    @pytest.mark.asyncio
    async def test_unknown_chart_and_recipient(self, session_factory, registry, make_user, make_chart):
        chart = await make_chart()
        a = await make_user("alice", balance=100)
        b = await make_user("bob")
        async with session_factory() as db:
            with pytest.raises(NotFoundError) as exc:
                await donate(db, registry, a.id, 999, b.id, 20)
        assert exc.value.code == "CHART_NOT_FOUND"
        async with session_factory() as db:
            with pytest.raises(NotFoundError) as exc:
                await donate(db, registry, a.id, chart.id, 999, 20)
        assert exc.value.code == "RECIPIENT_NOT_FOUND"


class TestShoutout:
    @pytest.mark.asyncio
    async def test_free_shoutout_updates_reputation(self, session_factory, registry, make_user, make_chart):
        chart = await make_chart()
        a = await make_user("alice")
        b = await make_user("bob")

        async with session_factory() as db:
            entry, reputation = await shoutout(db, registry, a.id, chart.id, b.id, "great play")

        # (4.5 * 1 + 5.0) / 2
        assert reputation == 4.75
        assert entry.amount == 0
        async with session_factory() as db:
            bob = await db.get(User, b.id)
            transfers = await db.scalar(select(func.count()).select_from(Transaction))
            refreshed = await get_chart(db, chart.id)
        assert bob.review_count == 2
        assert transfers == 0
        assert refreshed.total_shoutouts == 1

    @pytest.mark.asyncio
    async def test_reputation_never_exceeds_max(self, session_factory, registry, make_user, make_chart):
        chart = await make_chart()
        a = await make_user("alice")
        b = await make_user("bob")
        for _ in range(10):
            async with session_factory() as db:
                _, reputation = await shoutout(db, registry, a.id, chart.id, b.id)
        assert 4.5 < reputation <= 5.0

    @pytest.mark.asyncio
    async def test_paid_shoutout_transfers(self, session_factory, registry, make_user, make_chart):
        chart = await make_chart()
        a = await make_user("alice", balance=100)
        b = await make_user("bob")
        async with session_factory() as db:
            entry, _ = await shoutout(db, registry, a.id, chart.id, b.id, amount=15)
        async with session_factory() as db:
            entries = await get_entries_for_reference(db, "shoutout", entry.id)
        assert [e.amount for e in entries] == [-15, 15]

    @pytest.mark.asyncio
    async def test_self_shoutout_rejected(self, session_factory, registry, make_user, make_chart):
        chart = await make_chart()
        a = await make_user("alice")
        async with session_factory() as db:
            with pytest.raises(ValidationError) as exc:
                await shoutout(db, registry, a.id, chart.id, a.id)
        assert exc.value.code == "SELF_SHOUTOUT"

    @pytest.mark.asyncio
    async def test_paid_shoutout_needs_balance(self, session_factory, registry, make_user, make_chart):
        chart = await make_chart()
        a = await make_user("alice", balance=5)
        b = await make_user("bob")
        async with session_factory() as db:
            with pytest.raises(ConflictError):
                await shoutout(db, registry, a.id, chart.id, b.id, amount=10)
