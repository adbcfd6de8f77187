"""Donations and shoutouts: two-sided support transfers tied to a chart.

Every precondition (amount, chart, recipient, balance) is checked before the
first write. The transfer itself is two ledger entries in one transaction:
a debit on the supporter (``balance >= amount`` re-checked atomically) and a
credit on the recipient, plus the denormalized chart/user counters.
"""

from __future__ import annotations

import logging
import secrets
import time

from sqlalchemy import case, update
from sqlalchemy.ext.asyncio import AsyncSession

from thumbs.charts.service import get_chart
from thumbs.config import get_settings
from thumbs.db.base import utcnow
from thumbs.db.models import Chart, Donation, Shoutout, User
from thumbs.errors import ConflictError, ValidationError
from thumbs.ledger.service import apply_balance_change
from thumbs.notifications.push import push_notification
from thumbs.notifications.service import create_notification
from thumbs.users.service import require_user
from thumbs.ws.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def _transaction_id() -> str:
    return f"DON-{int(time.time() * 1000)}-{secrets.token_hex(5).upper()}"


async def _transfer(
    db: AsyncSession,
    sender: User,
    recipient: User,
    amount: int,
    type_: str,
    reference_id: int,
    note: str,
) -> None:
    await apply_balance_change(
        db, sender.id, -amount, type_,
        f"{type_.capitalize()} to {recipient.display_name}{note}",
        reference_type=type_,
        reference_id=reference_id,
        metadata={f"{type_}Id": reference_id, "recipientId": recipient.id},
        counters={"total_supported": amount},
    )
    await apply_balance_change(
        db, recipient.id, amount, type_,
        f"{type_.capitalize()} from {sender.display_name}",
        reference_type=type_,
        reference_id=reference_id,
        metadata={f"{type_}Id": reference_id, "senderId": sender.id},
        counters={"total_earned": amount},
    )


async def donate(
    db: AsyncSession,
    registry: ConnectionRegistry,
    user_id: int,
    chart_id: int,
    recipient_id: int,
    amount: int,
    message: str = "",
) -> Donation:
    """Transfer ``amount`` from the donor to the recipient on a chart.

    Raises:
        ValidationError: ``INVALID_AMOUNT``, ``BELOW_MINIMUM`` or ``SELF_DONATION``.
        NotFoundError: unknown chart or recipient.
        ConflictError: ``INSUFFICIENT_BALANCE``.
    """
    settings = get_settings()
    if amount <= 0:
        raise ValidationError("Invalid donation amount", "INVALID_AMOUNT")
    if amount < settings.min_donation_amount:
        raise ValidationError(f"Minimum donation is {settings.min_donation_amount} THB", "BELOW_MINIMUM")
    if user_id == recipient_id:
        raise ValidationError("You cannot donate to yourself", "SELF_DONATION")

    donor = await require_user(db, user_id)
    if donor.balance < amount:
        raise ConflictError("Insufficient balance", "INSUFFICIENT_BALANCE")
    chart = await get_chart(db, chart_id)
    recipient = await require_user(db, recipient_id, "Recipient")

    message = message.strip()
    now = utcnow()
    try:
        donation = Donation(
            user_id=user_id,
            chart_id=chart_id,
            recipient_id=recipient_id,
            amount=amount,
            message=message,
            status="completed",
            transaction_id=_transaction_id(),
            payment_method="balance",
            completed_at=now,
            created_at=now,
        )
        db.add(donation)
        await db.flush()

        await _transfer(
            db, donor, recipient, amount, "donation", donation.id,
            f": {message[:30]}" if message else "",
        )
        await db.execute(
            update(Chart)
            .where(Chart.id == chart_id)
            .values(total_donations=Chart.total_donations + amount, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        notification = await create_notification(
            db, recipient_id, "donation", "Received Donation!",
            f"{donor.display_name} donated {amount} THB" + (f": {message}" if message else ""),
            {
                "chartId": chart.id,
                "donationId": donation.id,
                "amount": amount,
                "donorId": user_id,
                "donorName": donor.display_name,
            },
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Donation %s: %d THB from user %d to user %d", donation.transaction_id, amount, user_id, recipient_id)
    push_notification(registry, notification)
    return donation


async def shoutout(
    db: AsyncSession,
    registry: ConnectionRegistry,
    user_id: int,
    chart_id: int,
    recipient_id: int,
    message: str = "",
    amount: int = 0,
) -> tuple[Shoutout, float]:
    """Publicly endorse a participant, optionally with a balance transfer.

    Returns the shoutout and the recipient's updated reputation.
    """
    settings = get_settings()
    if amount < 0:
        raise ValidationError("Invalid shoutout amount", "INVALID_AMOUNT")
    if user_id == recipient_id:
        raise ValidationError("You cannot shout yourself out", "SELF_SHOUTOUT")

    sender = await require_user(db, user_id)
    if amount > 0 and sender.balance < amount:
        raise ConflictError("Insufficient balance", "INSUFFICIENT_BALANCE")
    chart = await get_chart(db, chart_id)
    recipient = await require_user(db, recipient_id, "Recipient")

    message = message.strip()
    now = utcnow()
    try:
        entry = Shoutout(
            user_id=user_id,
            chart_id=chart_id,
            recipient_id=recipient_id,
            message=message,
            amount=amount,
            reputation_boost=0.05,
            created_at=now,
        )
        db.add(entry)
        await db.flush()

        if amount > 0:
            await _transfer(db, sender, recipient, amount, "shoutout", entry.id, "")

        await db.execute(
            update(Chart)
            .where(Chart.id == chart_id)
            .values(total_shoutouts=Chart.total_shoutouts + 1, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )

        averaged = (User.reputation * User.review_count + settings.shoutout_reputation_score) / (User.review_count + 1)
        result = await db.execute(
            update(User)
            .where(User.id == recipient_id)
            .values(
                reputation=case(
                    (averaged > settings.reputation_max, settings.reputation_max),
                    (averaged < 0, 0.0),
                    else_=averaged,
                ),
                review_count=User.review_count + 1,
                updated_at=now,
            )
            .returning(User.reputation)
            .execution_options(synchronize_session="fetch")
        )
        reputation = result.scalar_one()

        notification = await create_notification(
            db, recipient_id, "shoutout", "New Shoutout!",
            f"{sender.display_name} gave you a shoutout" + (f": {message}" if message else ""),
            {
                "chartId": chart.id,
                "shoutoutId": entry.id,
                "senderId": user_id,
                "senderName": sender.display_name,
                "amount": amount,
            },
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Shoutout %d from user %d to user %d (amount=%d)", entry.id, user_id, recipient_id, amount)
    push_notification(registry, notification)
    return entry, round(reputation, 2)
