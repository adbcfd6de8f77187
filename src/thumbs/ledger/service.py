"""Balance ledger.

Every balance mutation goes through :func:`apply_balance_change`, which does
the conditional balance update and appends exactly one ``transactions`` row
carrying the post-operation balance. Summing a user's entries in
``(created_at, id)`` order reproduces their balance history.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from thumbs.config import get_settings
from thumbs.db.base import utcnow
from thumbs.db.models import Transaction, User
from thumbs.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

LEDGER_TYPES = frozenset({
    "deposit",
    "withdrawal",
    "entry_fee",
    "prize",
    "donation",
    "shoutout",
    "refund",
    "bonus",
})

# Denormalized User counters that may move together with the balance
_COUNTER_FIELDS = frozenset({"total_earned", "total_supported", "charts_won", "charts_created"})


async def apply_balance_change(
    db: AsyncSession,
    user_id: int,
    amount: int,
    type_: str,
    description: str,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    metadata: dict[str, Any] | None = None,
    counters: dict[str, int] | None = None,
) -> Transaction:
    """Move ``amount`` (signed) on a user's balance and record the ledger entry.

    Debits only apply when the balance covers them; the check and the write
    are one conditional UPDATE. The caller owns the transaction (no commit).

    Raises:
        NotFoundError: the user does not exist.
        ConflictError: ``INSUFFICIENT_BALANCE`` for a debit the balance cannot cover.
    """
    if type_ not in LEDGER_TYPES:
        raise ValueError(f"Invalid ledger type: {type_}")
    if amount == 0:
        raise ValueError("Ledger entries must move a non-zero amount")

    now = utcnow()
    values: dict[str, Any] = {"balance": User.balance + amount, "updated_at": now}
    for field, delta in (counters or {}).items():
        if field not in _COUNTER_FIELDS:
            raise ValueError(f"Unknown balance counter: {field}")
        values[field] = getattr(User, field) + delta

    stmt = update(User).where(User.id == user_id)
    if amount < 0:
        stmt = stmt.where(User.balance >= -amount)
    result = await db.execute(
        stmt.values(**values)
        .returning(User.balance)
        .execution_options(synchronize_session="fetch")
    )
    new_balance = result.scalar_one_or_none()

    if new_balance is None:
        exists = await db.scalar(select(User.id).where(User.id == user_id))
        if exists is None:
            raise NotFoundError("User not found", "USER_NOT_FOUND")
        raise ConflictError("Insufficient balance", "INSUFFICIENT_BALANCE")

    entry = Transaction(
        user_id=user_id,
        type=type_,
        amount=amount,
        balance=new_balance,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description[:256],
        status="completed",
        tx_metadata=metadata or {},
        created_at=now,
    )
    db.add(entry)
    await db.flush()
    return entry


async def deposit(db: AsyncSession, user_id: int, amount: int) -> Transaction:
    """Top up the internal balance (no payment rails behind it)."""
    settings = get_settings()
    if amount <= 0:
        raise ValidationError("Invalid amount", "INVALID_AMOUNT")
    if amount > settings.max_deposit_amount:
        raise ValidationError(
            f"Maximum deposit is {settings.max_deposit_amount:,} THB", "ABOVE_MAXIMUM",
        )

    entry = await apply_balance_change(db, user_id, amount, "deposit", f"Deposit {amount} THB")
    await db.commit()
    logger.info("Deposit of %d for user %d (balance=%d)", amount, user_id, entry.balance)
    return entry


async def get_transactions(
    db: AsyncSession,
    user_id: int,
    page: int = 1,
    per_page: int = 20,
    type_: str | None = None,
) -> tuple[list[Transaction], int]:
    """Get a user's ledger entries (paginated, most recent first)."""
    conditions = [Transaction.user_id == user_id]
    if type_:
        conditions.append(Transaction.type == type_)

    total = await db.scalar(select(func.count()).select_from(Transaction).where(*conditions))

    result = await db.execute(
        select(Transaction)
        .where(*conditions)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total or 0


async def get_balance_history(db: AsyncSession, user_id: int) -> list[Transaction]:
    """All ledger entries of a user in the order they were applied."""
    result = await db.execute(
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.asc(), Transaction.id.asc())
    )
    return list(result.scalars().all())


async def get_entries_for_reference(
    db: AsyncSession,
    reference_type: str,
    reference_id: int,
) -> list[Transaction]:
    result = await db.execute(
        select(Transaction)
        .where(
            Transaction.reference_type == reference_type,
            Transaction.reference_id == reference_id,
        )
        .order_by(Transaction.id.asc())
    )
    return list(result.scalars().all())
