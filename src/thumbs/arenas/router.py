"""Arena API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from thumbs.arenas.schemas import (
    ArenaDetailResponse,
    ArenaStatusResponse,
    CompleteArenaRequest,
    LiveArenaListResponse,
    SettlementResponse,
)
from thumbs.arenas.service import (
    get_arena_detail,
    list_live_arenas,
    pause_arena,
    resume_arena,
)
from thumbs.arenas.settlement import complete_arena, get_arena_for_update
from thumbs.auth.dependencies import get_current_user
from thumbs.database import get_session
from thumbs.db.models import ArenaPlayer, User
from thumbs.dependencies import get_broadcaster
from thumbs.errors import ForbiddenError
from thumbs.ws.broadcaster import Broadcaster

router = APIRouter(prefix="/api/v1/arenas", tags=["Arenas"])


@router.get("/live", response_model=LiveArenaListResponse)
async def live_arenas(
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    """Arenas currently being played, with player and spectator counts."""
    arenas = await list_live_arenas(db, limit)
    return LiveArenaListResponse(arenas=arenas, total=len(arenas))


@router.get("/{arena_id}", response_model=ArenaDetailResponse)
async def arena_detail(arena_id: int, db: AsyncSession = Depends(get_session)):
    return await get_arena_detail(db, arena_id)


@router.post("/{arena_id}/complete", response_model=SettlementResponse)
async def complete(
    arena_id: int,
    body: CompleteArenaRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """Settle an arena. Repeated calls return the recorded outcome.

    Only the chart creator or one of the arena's players may settle it.
    """
    arena = await get_arena_for_update(db, arena_id)
    is_player = await db.scalar(
        select(ArenaPlayer.id).where(ArenaPlayer.arena_id == arena_id, ArenaPlayer.user_id == user.id)
    )
    if is_player is None and arena.chart.creator_id != user.id:
        raise ForbiddenError("Not allowed to settle this arena", "NOT_A_PLAYER")

    result = await complete_arena(db, broadcaster, arena_id, body.winner_id)
    return SettlementResponse(
        arena_id=result.arena_id,
        winner_id=result.winner_id,
        prize=result.prize,
        already_settled=result.already_settled,
    )


@router.post("/{arena_id}/pause", response_model=ArenaStatusResponse)
async def pause(
    arena_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    await pause_arena(db, broadcaster, arena_id, user.id)
    return ArenaStatusResponse(arena_id=arena_id, status="paused")


@router.post("/{arena_id}/resume", response_model=ArenaStatusResponse)
async def resume(
    arena_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    await resume_arena(db, broadcaster, arena_id, user.id)
    return ArenaStatusResponse(arena_id=arena_id, status="live")
