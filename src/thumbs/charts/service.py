"""Chart creation and the chart-join transaction.

Joining claims a slot with one conditional UPDATE (``participant_count <
max_participants``), so concurrent joins can never overfill a chart. The join
that takes the last slot starts the match: chart -> in-progress and an arena
whose player list is a snapshot of the chart's participants at that moment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from thumbs.config import get_settings
from thumbs.db.base import as_utc, utcnow
from thumbs.db.models import Arena, ArenaChat, ArenaPlayer, Chart, ChartParticipant, Notification, User
from thumbs.errors import ConflictError, NotFoundError, ValidationError
from thumbs.ledger.service import apply_balance_change
from thumbs.notifications.push import push_notifications
from thumbs.notifications.service import create_notification
from thumbs.users.service import require_user
from thumbs.ws.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinResult:
    chart: Chart
    arena_id: int | None


async def get_chart(db: AsyncSession, chart_id: int) -> Chart:
    result = await db.execute(
        select(Chart).where(Chart.id == chart_id).execution_options(populate_existing=True)
    )
    chart = result.scalar_one_or_none()
    if chart is None:
        raise NotFoundError("Chart not found", "CHART_NOT_FOUND")
    return chart


async def get_arena_id_for_chart(db: AsyncSession, chart_id: int) -> int | None:
    return await db.scalar(select(Arena.id).where(Arena.chart_id == chart_id))


async def create_chart(
    db: AsyncSession,
    creator_id: int,
    *,
    title: str,
    game: str,
    entry_fee: int,
    max_participants: int = 2,
    time_limit: int = 5,
    description: str = "",
    difficulty: str = "intermediate",
    win_score: int | None = None,
    tags: list[str] | None = None,
) -> Chart:
    """Create a chart. The creator pays the entry fee and is its first participant."""
    settings = get_settings()
    title = title.strip()
    game = game.strip()
    if not title or not game:
        raise ValidationError("Title and game are required", "MISSING_FIELDS")
    if entry_fee < 0:
        raise ValidationError("Entry fee cannot be negative", "INVALID_AMOUNT")
    if not settings.chart_min_participants <= max_participants <= settings.chart_max_participants:
        raise ValidationError(
            f"Max participants must be between {settings.chart_min_participants} "
            f"and {settings.chart_max_participants}",
            "INVALID_PARTICIPANTS",
        )
    if not settings.chart_min_time_limit <= time_limit <= settings.chart_max_time_limit:
        raise ValidationError(
            f"Time limit must be between {settings.chart_min_time_limit} "
            f"and {settings.chart_max_time_limit} minutes",
            "INVALID_TIME_LIMIT",
        )
    if win_score is not None and win_score <= 0:
        raise ValidationError("Win score must be positive", "INVALID_WIN_SCORE")

    await require_user(db, creator_id)
    now = utcnow()
    chart = Chart(
        creator_id=creator_id,
        title=title,
        description=description.strip(),
        game=game,
        difficulty=difficulty,
        entry_fee=entry_fee,
        prize_pool=entry_fee,
        status="open",
        participant_count=1,
        max_participants=max_participants,
        min_participants=settings.chart_min_participants,
        time_limit=time_limit,
        win_score=win_score or settings.default_win_score,
        starts_at=now + timedelta(minutes=settings.chart_start_delay_minutes),
        tags=[t.strip() for t in (tags or []) if t.strip()],
        created_at=now,
        updated_at=now,
    )
    db.add(chart)
    await db.flush()

    if entry_fee > 0:
        await apply_balance_change(
            db, creator_id, -entry_fee, "entry_fee", f"Entry fee for: {title}",
            reference_type="chart",
            reference_id=chart.id,
            counters={"charts_created": 1},
        )
    else:
        await db.execute(
            update(User)
            .where(User.id == creator_id)
            .values(charts_created=User.charts_created + 1)
            .execution_options(synchronize_session="fetch")
        )

    db.add(ChartParticipant(chart_id=chart.id, user_id=creator_id, status="active", joined_at=now))
    await db.commit()
    logger.info("Chart %d created by user %d (fee=%d, slots=%d)", chart.id, creator_id, entry_fee, max_participants)
    return await get_chart(db, chart.id)


async def join_chart(
    db: AsyncSession,
    registry: ConnectionRegistry,
    chart_id: int,
    user_id: int,
) -> JoinResult:
    """Join a chart, paying its entry fee.

    Every precondition is checked before anything is written; the slot claim
    is re-checked atomically by the conditional UPDATE.

    Raises:
        NotFoundError: unknown chart or user.
        ConflictError: ``CHART_FULL``, ``CHART_NOT_OPEN``, ``CHART_STARTED``,
            ``ALREADY_JOINED`` or ``INSUFFICIENT_BALANCE``.
    """
    chart = await get_chart(db, chart_id)
    user = await require_user(db, user_id)
    now = utcnow()

    if chart.participant_count >= chart.max_participants:
        raise ConflictError("Chart is full", "CHART_FULL")
    if chart.status != "open":
        raise ConflictError("Chart is not open", "CHART_NOT_OPEN")
    already = await db.scalar(
        select(ChartParticipant.id).where(
            ChartParticipant.chart_id == chart_id, ChartParticipant.user_id == user_id,
        )
    )
    if already is not None:
        raise ConflictError("Already joined this chart", "ALREADY_JOINED")
    if now > as_utc(chart.starts_at):
        raise ConflictError("Chart has already started", "CHART_STARTED")
    if user.balance < chart.entry_fee:
        raise ConflictError("Insufficient balance", "INSUFFICIENT_BALANCE")

    notifications: list[Notification] = []
    arena_id: int | None = None
    try:
        claimed = await db.execute(
            update(Chart)
            .where(
                Chart.id == chart_id,
                Chart.status == "open",
                Chart.participant_count < Chart.max_participants,
            )
            .values(
                participant_count=Chart.participant_count + 1,
                prize_pool=Chart.prize_pool + chart.entry_fee,
                updated_at=now,
            )
            .returning(Chart.participant_count)
            .execution_options(synchronize_session="fetch")
        )
        count = claimed.scalar_one_or_none()
        if count is None:
            raise ConflictError("Chart is full", "CHART_FULL")

        if chart.entry_fee > 0:
            await apply_balance_change(
                db, user_id, -chart.entry_fee, "entry_fee", f"Entry fee for: {chart.title}",
                reference_type="chart",
                reference_id=chart_id,
            )

        try:
            async with db.begin_nested():
                db.add(ChartParticipant(chart_id=chart_id, user_id=user_id, status="active", joined_at=now))
        except IntegrityError:
            raise ConflictError("Already joined this chart", "ALREADY_JOINED") from None

        if count >= chart.max_participants:
            arena_id, started = await _start_match(db, chart, now)
            notifications.extend(started)

        if user_id != chart.creator_id:
            notifications.append(await create_notification(
                db, chart.creator_id, "chart_joined", "New Participant",
                f'{user.display_name} joined your chart "{chart.title}"',
                {"chartId": chart_id, "userId": user_id},
            ))

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("User %d joined chart %d (%d/%d)", user_id, chart_id, count, chart.max_participants)
    push_notifications(registry, notifications)
    return JoinResult(chart=await get_chart(db, chart_id), arena_id=arena_id)


async def _start_match(db: AsyncSession, chart: Chart, now: datetime) -> tuple[int, list[Notification]]:
    """Chart is full: move it in-progress and open the arena with a player snapshot."""
    await db.execute(
        update(Chart)
        .where(Chart.id == chart.id)
        .values(status="in-progress", updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    rows = await db.execute(
        select(ChartParticipant.user_id)
        .where(ChartParticipant.chart_id == chart.id)
        .order_by(ChartParticipant.id)
    )
    participant_ids = list(rows.scalars())

    arena = Arena(
        chart_id=chart.id,
        status="live",
        current_round=1,
        total_rounds=3,
        game_state={},
        started_at=now,
        created_at=now,
        updated_at=now,
    )
    db.add(arena)
    await db.flush()
    for uid in participant_ids:
        db.add(ArenaPlayer(arena_id=arena.id, user_id=uid, score=0, moves=0, status="playing", joined_at=now))
    db.add(ArenaChat(arena_id=arena.id, user_id=None, kind="system", message="Match started", created_at=now))

    notifications = [
        await create_notification(
            db, uid, "match_start", "Match Started!",
            f'Your chart "{chart.title}" has started. Join the arena now!',
            {"chartId": chart.id, "arenaId": arena.id},
        )
        for uid in participant_ids
    ]
    logger.info("Chart %d full, arena %d live with %d players", chart.id, arena.id, len(participant_ids))
    return arena.id, notifications
