"""Settlement engine: finalize an arena and distribute its prize exactly once.

The whole settlement runs in one database transaction:
1. Guarded UPDATE arena -> finished (no row means somebody else settled it)
2. Chart -> completed, winner and end time stamped
3. Prize = entry fee x participant count, credited through the ledger
   (a draw refunds every entry fee instead)
4. System chat entry and notifications for every participant

Only after the commit are notifications pushed and ``arena_completed``
broadcast, so nothing user-visible happens for a settlement that rolled back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from thumbs.arenas.schemas import ArenaChatResponse
from thumbs.db.base import utcnow
from thumbs.db.models import Arena, ArenaChat, ArenaPlayer, Chart, ChartParticipant, Notification, User
from thumbs.errors import NotFoundError, ValidationError
from thumbs.ledger.service import apply_balance_change
from thumbs.notifications.push import push_notifications
from thumbs.notifications.service import create_notification
from thumbs.users.service import get_users_by_ids
from thumbs.ws.broadcaster import Broadcaster

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementResult:
    arena_id: int
    winner_id: int | None
    prize: int
    already_settled: bool


async def get_arena_for_update(db: AsyncSession, arena_id: int) -> Arena:
    """Load an arena, bypassing any stale copy in the session's identity map."""
    result = await db.execute(
        select(Arena).where(Arena.id == arena_id).execution_options(populate_existing=True)
    )
    arena = result.unique().scalar_one_or_none()
    if arena is None:
        raise NotFoundError("Arena not found", "ARENA_NOT_FOUND")
    return arena


def _existing_result(arena: Arena) -> SettlementResult:
    return SettlementResult(
        arena_id=arena.id,
        winner_id=arena.winner_id,
        prize=arena.prize or 0,
        already_settled=True,
    )


async def complete_arena(
    db: AsyncSession,
    broadcaster: Broadcaster,
    arena_id: int,
    winner_id: int | None,
) -> SettlementResult:
    """Settle an arena. Safe to call repeatedly or concurrently.

    A second call (or a call losing the race) returns the recorded outcome
    with ``already_settled=True`` and moves no money.

    Raises:
        NotFoundError: unknown arena.
        ValidationError: ``winner_id`` is not one of the arena's players.
    """
    arena = await get_arena_for_update(db, arena_id)
    if arena.status == "finished":
        return _existing_result(arena)

    player_rows = await db.execute(
        select(ArenaPlayer.user_id).where(ArenaPlayer.arena_id == arena_id).order_by(ArenaPlayer.id)
    )
    player_ids = list(player_rows.scalars())
    if winner_id is not None and winner_id not in player_ids:
        raise ValidationError("Winner must be a player in this arena", "INVALID_WINNER")

    try:
        chart = (
            await db.execute(
                select(Chart).where(Chart.id == arena.chart_id).execution_options(populate_existing=True)
            )
        ).scalar_one()
        participant_rows = await db.execute(
            select(ChartParticipant.user_id)
            .where(ChartParticipant.chart_id == chart.id)
            .order_by(ChartParticipant.id)
        )
        participant_ids = list(participant_rows.scalars())
        prize = chart.entry_fee * len(participant_ids) if winner_id is not None else 0
        now = utcnow()

        guard = await db.execute(
            update(Arena)
            .where(Arena.id == arena_id, Arena.status != "finished")
            .values(status="finished", winner_id=winner_id, prize=prize, ended_at=now, updated_at=now)
            .returning(Arena.id)
            .execution_options(synchronize_session="fetch")
        )
        if guard.scalar_one_or_none() is None:
            await db.rollback()
            logger.info("Arena %d already settled, skipping", arena_id)
            return _existing_result(await get_arena_for_update(db, arena_id))

        await db.execute(
            update(Chart)
            .where(Chart.id == chart.id)
            .values(status="completed", winner_id=winner_id, ends_at=now, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        await db.execute(
            update(ArenaPlayer)
            .where(ArenaPlayer.arena_id == arena_id)
            .values(status="finished")
            .execution_options(synchronize_session="fetch")
        )
        await db.execute(
            update(ChartParticipant)
            .where(ChartParticipant.chart_id == chart.id)
            .values(status="completed")
            .execution_options(synchronize_session="fetch")
        )

        users = await get_users_by_ids(db, participant_ids)
        if winner_id is not None:
            if prize > 0:
                await apply_balance_change(
                    db, winner_id, prize, "prize", f"Prize for {chart.title}",
                    reference_type="chart",
                    reference_id=chart.id,
                    metadata={"arena_id": arena_id, "participants": len(participant_ids)},
                    counters={"total_earned": prize, "charts_won": 1},
                )
            else:
                await db.execute(
                    update(User)
                    .where(User.id == winner_id)
                    .values(charts_won=User.charts_won + 1)
                    .execution_options(synchronize_session="fetch")
                )
        elif chart.entry_fee > 0:
            for user_id in participant_ids:
                await apply_balance_change(
                    db, user_id, chart.entry_fee, "refund", f"Refund for {chart.title} (draw)",
                    reference_type="chart",
                    reference_id=chart.id,
                    metadata={"arena_id": arena_id},
                )

        winner = users.get(winner_id) if winner_id is not None else None
        chat_text = f"{winner.display_name} wins the match!" if winner else "Match ended in a draw"
        chat = ArenaChat(arena_id=arena_id, user_id=None, kind="system", message=chat_text, created_at=now)
        db.add(chat)

        notifications: list[Notification] = []
        for user_id in participant_ids:
            if user_id == winner_id:
                notifications.append(await create_notification(
                    db, user_id, "prize_won", "You won!",
                    f"You won {prize} THB in {chart.title}",
                    {"chartId": chart.id, "arenaId": arena_id, "prize": prize},
                ))
            else:
                outcome = f"{winner.display_name} won." if winner else "It ended in a draw."
                notifications.append(await create_notification(
                    db, user_id, "chart_completed", "Chart completed",
                    f"{chart.title} has finished. {outcome}",
                    {"chartId": chart.id, "arenaId": arena_id, "winnerId": winner_id},
                ))

        await db.flush()
        audience = await broadcaster.arena_audience(db, arena_id)
        chat_payload = ArenaChatResponse(
            id=chat.id, user_id=None, user=None, type="system", message=chat.message, created_at=chat.created_at,
        ).model_dump(mode="json")

        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("Settlement failed for arena %d", arena_id)
        raise

    logger.info(
        "Arena %d settled: winner=%s prize=%d participants=%d",
        arena_id, winner_id, prize, len(participant_ids),
    )

    push_notifications(broadcaster.registry, notifications)
    broadcaster.to_users(audience, "arena_chat", arenaId=arena_id, chat=chat_payload)
    broadcaster.to_users(audience, "arena_completed", arenaId=arena_id, winnerId=winner_id, prize=prize)

    return SettlementResult(arena_id=arena_id, winner_id=winner_id, prize=prize, already_settled=False)
