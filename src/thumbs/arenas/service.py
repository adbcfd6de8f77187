"""Arena service: runs state machine commands against persisted arenas.

Each command is handled as:
1. Load the arena state inside a transaction
2. ``state_machine.apply`` decides the effects
3. Effects are persisted and their outbound messages staged (audience and
   payloads are resolved before the commit)
4. Commit, then release the staged messages without awaiting in between,
   so per-arena delivery order matches commit order
5. A ``Settle`` effect runs the settlement engine last
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from thumbs.arenas import state_machine as sm
from thumbs.arenas.schemas import (
    ArenaChatResponse,
    ArenaDetailResponse,
    ArenaPlayerResponse,
    ArenaSpectatorResponse,
    LiveArenaResponse,
)
from thumbs.arenas.settlement import SettlementResult, complete_arena, get_arena_for_update
from thumbs.config import get_settings
from thumbs.db.base import utcnow
from thumbs.db.models import Arena, ArenaChat, ArenaPlayer, ArenaSpectator, Chart
from thumbs.errors import ConflictError
from thumbs.users.schemas import UserSummary
from thumbs.users.service import require_user
from thumbs.ws.broadcaster import Broadcaster

logger = logging.getLogger(__name__)

SNAPSHOT_CHAT_LIMIT = 100


@dataclass
class _Staged:
    """An outbound message resolved inside the transaction, sent after commit."""

    type_: str
    fields: dict[str, Any] = field(default_factory=dict)
    user_id: int | None = None  # None: the whole arena audience
    exclude_user_id: int | None = None


def _release(broadcaster: Broadcaster, audience: list[int], staged: list[_Staged]) -> None:
    for msg in staged:
        if msg.user_id is None:
            broadcaster.to_users(audience, msg.type_, exclude_user_id=msg.exclude_user_id, **msg.fields)
        else:
            broadcaster.to_user(msg.user_id, msg.type_, **msg.fields)


# --- Reads ---


async def load_state(db: AsyncSession, arena: Arena) -> sm.ArenaState:
    players = await db.execute(
        select(ArenaPlayer).where(ArenaPlayer.arena_id == arena.id).order_by(ArenaPlayer.id)
    )
    spectators = await db.execute(
        select(ArenaSpectator.user_id)
        .where(ArenaSpectator.arena_id == arena.id)
        .order_by(ArenaSpectator.joined_at, ArenaSpectator.id)
    )
    return sm.ArenaState(
        arena_id=arena.id,
        status=arena.status,
        players=tuple(
            sm.PlayerState(user_id=p.user_id, score=p.score, moves=p.moves, status=p.status)
            for p in players.scalars()
        ),
        spectators=tuple(spectators.scalars()),
        win_score=arena.chart.win_score,
        winner_id=arena.winner_id,
    )


def chat_response(entry: ArenaChat) -> ArenaChatResponse:
    return ArenaChatResponse(
        id=entry.id,
        user_id=entry.user_id,
        user=UserSummary.model_validate(entry.user) if entry.user is not None else None,
        type=entry.kind,
        message=entry.message,
        created_at=entry.created_at,
    )


async def build_snapshot(db: AsyncSession, arena: Arena) -> ArenaDetailResponse:
    """Full arena state with player/spectator identities and recent chat."""
    players = await db.execute(
        select(ArenaPlayer)
        .where(ArenaPlayer.arena_id == arena.id)
        .order_by(ArenaPlayer.id)
        .execution_options(populate_existing=True)
    )
    spectators = await db.execute(
        select(ArenaSpectator)
        .where(ArenaSpectator.arena_id == arena.id)
        .order_by(ArenaSpectator.joined_at, ArenaSpectator.id)
    )
    chat = await db.execute(
        select(ArenaChat)
        .where(ArenaChat.arena_id == arena.id)
        .order_by(ArenaChat.id.desc())
        .limit(SNAPSHOT_CHAT_LIMIT)
    )
    chart = arena.chart
    return ArenaDetailResponse(
        id=arena.id,
        chart_id=arena.chart_id,
        chart_title=chart.title,
        game=chart.game,
        status=arena.status,
        current_round=arena.current_round,
        total_rounds=arena.total_rounds,
        win_score=chart.win_score,
        entry_fee=chart.entry_fee,
        winner_id=arena.winner_id,
        prize=arena.prize,
        started_at=arena.started_at,
        ended_at=arena.ended_at,
        players=[
            ArenaPlayerResponse(
                user_id=p.user_id,
                user=UserSummary.model_validate(p.user),
                score=p.score,
                moves=p.moves,
                status=p.status,
            )
            for p in players.unique().scalars()
        ],
        spectators=[
            ArenaSpectatorResponse(
                user_id=s.user_id,
                user=UserSummary.model_validate(s.user),
                joined_at=s.joined_at,
            )
            for s in spectators.unique().scalars()
        ],
        chat=[chat_response(c) for c in reversed(chat.unique().scalars().all())],
    )


async def get_arena_detail(db: AsyncSession, arena_id: int) -> ArenaDetailResponse:
    arena = await get_arena_for_update(db, arena_id)
    return await build_snapshot(db, arena)


async def list_live_arenas(db: AsyncSession, limit: int = 50) -> list[LiveArenaResponse]:
    """Arenas currently in play (live or paused), newest first, with audience counts."""
    player_counts = (
        select(ArenaPlayer.arena_id, func.count().label("n"))
        .group_by(ArenaPlayer.arena_id)
        .subquery()
    )
    spectator_counts = (
        select(ArenaSpectator.arena_id, func.count().label("n"))
        .group_by(ArenaSpectator.arena_id)
        .subquery()
    )
    result = await db.execute(
        select(
            Arena.id,
            Arena.chart_id,
            Arena.status,
            Arena.started_at,
            Chart.title,
            Chart.game,
            func.coalesce(player_counts.c.n, 0),
            func.coalesce(spectator_counts.c.n, 0),
        )
        .join(Chart, Chart.id == Arena.chart_id)
        .outerjoin(player_counts, player_counts.c.arena_id == Arena.id)
        .outerjoin(spectator_counts, spectator_counts.c.arena_id == Arena.id)
        .where(Arena.status.in_(("live", "paused")))
        .order_by(Arena.started_at.desc(), Arena.id.desc())
        .limit(limit)
    )
    return [
        LiveArenaResponse(
            id=row[0],
            chart_id=row[1],
            status=row[2],
            started_at=row[3],
            chart_title=row[4],
            game=row[5],
            player_count=row[6],
            spectator_count=row[7],
        )
        for row in result.all()
    ]


# --- Commands ---


async def handle_command(
    db: AsyncSession,
    broadcaster: Broadcaster,
    arena_id: int,
    command: sm.Command,
) -> SettlementResult | None:
    """Apply one command to an arena and deliver its effects.

    Returns the settlement result when the command finished the match.

    Raises:
        NotFoundError: unknown arena.
        ValidationError / ForbiddenError / ConflictError: rejected by the state machine.
    """
    settings = get_settings()
    arena = await get_arena_for_update(db, arena_id)
    state = await load_state(db, arena)
    _, effects = sm.apply(state, command, chat_max_length=settings.chat_max_length)

    staged: list[_Staged] = []
    settle: sm.Settle | None = None
    try:
        for effect in effects:
            if isinstance(effect, sm.AddSpectator):
                joined = await _add_spectator(db, arena_id, effect.user_id)
                if joined is not None:
                    staged.append(joined)
            elif isinstance(effect, sm.RemoveSpectator):
                await db.execute(
                    delete(ArenaSpectator).where(
                        ArenaSpectator.arena_id == arena_id,
                        ArenaSpectator.user_id == effect.user_id,
                    )
                )
                staged.append(_Staged("spectator_left", {"userId": effect.user_id, "arenaId": arena_id}))
            elif isinstance(effect, sm.SendSnapshot):
                # Filled in once every other effect of this command is flushed
                staged.append(_Staged("arena_state", user_id=effect.user_id))
            elif isinstance(effect, sm.AppendChat):
                entry = ArenaChat(
                    arena_id=arena_id,
                    user_id=effect.user_id,
                    kind=effect.kind,
                    message=effect.message,
                    created_at=utcnow(),
                )
                db.add(entry)
                await db.flush()
                await db.refresh(entry, ["user"])
                staged.append(_Staged(
                    "arena_chat",
                    {"arenaId": arena_id, "chat": chat_response(entry).model_dump(mode="json")},
                ))
            elif isinstance(effect, sm.RecordScore):
                await db.execute(
                    update(ArenaPlayer)
                    .where(ArenaPlayer.arena_id == arena_id, ArenaPlayer.user_id == effect.player_id)
                    .values(score=effect.score, moves=effect.moves)
                    .execution_options(synchronize_session="fetch")
                )
                staged.append(_Staged("score_update", {
                    "arenaId": arena_id,
                    "playerId": effect.player_id,
                    "score": effect.score,
                    "moves": effect.moves,
                }))
            elif isinstance(effect, sm.ChangeStatus):
                await _change_status(db, arena_id, state.status, effect.status)
                staged.append(_Staged("arena_status", {"arenaId": arena_id, "status": effect.status}))
            elif isinstance(effect, sm.Settle):
                settle = effect

        await db.flush()
        snapshots = [msg for msg in staged if msg.type_ == "arena_state"]
        if snapshots:
            snapshot = await build_snapshot(db, await get_arena_for_update(db, arena_id))
            for msg in snapshots:
                msg.fields["arena"] = snapshot.model_dump(mode="json")
        audience = await broadcaster.arena_audience(db, arena_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    _release(broadcaster, audience, staged)

    if settle is not None:
        return await complete_arena(db, broadcaster, arena_id, settle.winner_id)
    return None


async def _add_spectator(db: AsyncSession, arena_id: int, user_id: int) -> _Staged | None:
    user = await require_user(db, user_id)
    try:
        async with db.begin_nested():
            db.add(ArenaSpectator(arena_id=arena_id, user_id=user_id, joined_at=utcnow()))
    except IntegrityError:
        # A concurrent join by the same user got there first
        return None
    return _Staged(
        "spectator_joined",
        {
            "userId": user_id,
            "user": UserSummary.model_validate(user).model_dump(mode="json"),
            "arenaId": arena_id,
        },
        exclude_user_id=user_id,
    )


async def _change_status(db: AsyncSession, arena_id: int, current: str, target: str) -> None:
    result = await db.execute(
        update(Arena)
        .where(Arena.id == arena_id, Arena.status == current)
        .values(status=target, updated_at=utcnow())
        .returning(Arena.id)
        .execution_options(synchronize_session="fetch")
    )
    if result.scalar_one_or_none() is None:
        raise ConflictError("Arena status changed concurrently", "INVALID_TRANSITION")


async def join_arena(db: AsyncSession, broadcaster: Broadcaster, arena_id: int, user_id: int) -> None:
    await handle_command(db, broadcaster, arena_id, sm.JoinSpectator(user_id))


async def post_chat(db: AsyncSession, broadcaster: Broadcaster, arena_id: int, user_id: int, message: str) -> None:
    await handle_command(db, broadcaster, arena_id, sm.PostChat(user_id, message))


async def update_score(
    db: AsyncSession,
    broadcaster: Broadcaster,
    arena_id: int,
    reporter_id: int,
    player_id: int,
    score: int,
    moves: int | None = None,
) -> SettlementResult | None:
    return await handle_command(db, broadcaster, arena_id, sm.UpdateScore(reporter_id, player_id, score, moves))


async def leave_arena(db: AsyncSession, broadcaster: Broadcaster, arena_id: int, user_id: int) -> None:
    await handle_command(db, broadcaster, arena_id, sm.LeaveArena(user_id))


async def pause_arena(db: AsyncSession, broadcaster: Broadcaster, arena_id: int, user_id: int) -> None:
    await handle_command(db, broadcaster, arena_id, sm.PauseArena(user_id))


async def resume_arena(db: AsyncSession, broadcaster: Broadcaster, arena_id: int, user_id: int) -> None:
    await handle_command(db, broadcaster, arena_id, sm.ResumeArena(user_id))
