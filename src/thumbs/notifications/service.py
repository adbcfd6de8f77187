"""Notification persistence and queries.

Notifications are:
1. Persisted in the caller's transaction (``create_notification`` only flushes)
2. Pushed to the recipient's live session after the caller commits
   (see :mod:`thumbs.notifications.push`)

Types: shoutout, donation, chart_joined, chart_completed, arena_invite,
follow, achievement, system, match_start, prize_won
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from thumbs.db.base import utcnow
from thumbs.db.models import Notification

logger = logging.getLogger(__name__)

VALID_TYPES = frozenset({
    "shoutout",
    "donation",
    "chart_joined",
    "chart_completed",
    "arena_invite",
    "follow",
    "achievement",
    "system",
    "match_start",
    "prize_won",
})


async def create_notification(
    db: AsyncSession,
    user_id: int,
    type_: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> Notification:
    """Persist a notification row. The caller commits and then pushes it."""
    if type_ not in VALID_TYPES:
        raise ValueError(f"Invalid notification type: {type_}. Must be one of {sorted(VALID_TYPES)}")

    notification = Notification(
        user_id=user_id,
        type=type_,
        title=title,
        message=message,
        data=data or {},
        read=False,
        created_at=utcnow(),
    )
    db.add(notification)
    await db.flush()
    return notification


async def get_notifications(
    db: AsyncSession,
    user_id: int,
    page: int = 1,
    per_page: int = 20,
    unread_only: bool = False,
) -> tuple[list[Notification], int]:
    """Get user's notifications (paginated, most recent first)."""
    conditions = [Notification.user_id == user_id]
    if unread_only:
        conditions.append(Notification.read.is_(False))

    total = await db.scalar(select(func.count()).select_from(Notification).where(*conditions))

    result = await db.execute(
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total or 0


async def mark_as_read(db: AsyncSession, user_id: int, notification_id: int) -> bool:
    """Mark one of the user's notifications as read.

    Idempotent: an already-read notification keeps its first ``read_at``.
    Returns False when the notification does not exist or is not the user's.
    """
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(read=True, read_at=func.coalesce(Notification.read_at, utcnow()))
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    return result.rowcount > 0


async def mark_all_as_read(db: AsyncSession, user_id: int) -> int:
    """Mark all unread notifications as read. Returns count updated."""
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
        .values(read=True, read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    return result.rowcount


async def get_unread_count(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
    )
    return result.scalar_one()
