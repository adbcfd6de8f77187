"""User lookups, creation and presence status.

Registration and profile editing live outside this service; the core only
needs to read users, create them (seeding, tests) and flip presence.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select, update

from thumbs.db.base import utcnow
from thumbs.db.models import User
from thumbs.errors import NotFoundError, ValidationError
from thumbs.ledger.service import apply_balance_change

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

VALID_STATUSES = frozenset({"online", "offline", "in-game", "away"})


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def require_user(db: AsyncSession, user_id: int, label: str = "User") -> User:
    """Get a user or raise NotFoundError."""
    user = await get_user_by_id(db, user_id)
    if user is None:
        raise NotFoundError(f"{label} not found", f"{label.upper()}_NOT_FOUND")
    return user


async def get_users_by_ids(db: AsyncSession, user_ids: list[int]) -> dict[int, User]:
    if not user_ids:
        return {}
    result = await db.execute(select(User).where(User.id.in_(user_ids)))
    return {u.id: u for u in result.scalars().all()}


async def create_user(
    db: AsyncSession,
    username: str,
    display_name: str | None = None,
    email: str | None = None,
    initial_balance: int = 0,
) -> User:
    """Create a user. A starting balance is granted through the ledger as a bonus."""
    username = username.strip().lower()
    if not username:
        raise ValidationError("Username is required")

    user = User(
        username=username,
        email=email.lower() if email else None,
        display_name=(display_name or username).strip(),
        balance=0,
        created_at=utcnow(),
        updated_at=utcnow(),
    )
    db.add(user)
    await db.flush()

    if initial_balance > 0:
        await apply_balance_change(db, user.id, initial_balance, "bonus", "Welcome bonus")
        await db.refresh(user)

    logger.info("user_created", user_id=user.id, username=username)
    return user


async def set_user_status(db: AsyncSession, user_id: int, status: str) -> bool:
    """Set presence status and stamp last_seen. Returns False for an unknown user."""
    if status not in VALID_STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    now = utcnow()
    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(status=status, last_seen=now, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    await db.commit()
    return result.rowcount > 0
