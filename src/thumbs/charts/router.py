"""Chart API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from thumbs.auth.dependencies import get_current_user
from thumbs.charts.schemas import (
    ChartParticipantResponse,
    ChartResponse,
    CreateChartRequest,
    JoinChartResponse,
)
from thumbs.charts.service import create_chart, get_arena_id_for_chart, get_chart, join_chart
from thumbs.database import get_session
from thumbs.db.models import Chart, User
from thumbs.dependencies import get_registry
from thumbs.users.schemas import UserSummary
from thumbs.ws.registry import ConnectionRegistry

router = APIRouter(prefix="/api/v1/charts", tags=["Charts"])


async def _to_response(db: AsyncSession, chart: Chart) -> ChartResponse:
    return ChartResponse(
        id=chart.id,
        creator_id=chart.creator_id,
        title=chart.title,
        description=chart.description,
        game=chart.game,
        difficulty=chart.difficulty,
        entry_fee=chart.entry_fee,
        prize_pool=chart.prize_pool,
        status=chart.status,
        participant_count=chart.participant_count,
        max_participants=chart.max_participants,
        min_participants=chart.min_participants,
        time_limit=chart.time_limit,
        win_score=chart.win_score,
        starts_at=chart.starts_at,
        ends_at=chart.ends_at,
        total_donations=chart.total_donations,
        total_shoutouts=chart.total_shoutouts,
        tags=chart.tags or [],
        winner_id=chart.winner_id,
        arena_id=await get_arena_id_for_chart(db, chart.id),
        participants=[
            ChartParticipantResponse(
                user_id=p.user_id,
                user=UserSummary.model_validate(p.user),
                status=p.status,
                joined_at=p.joined_at,
            )
            for p in chart.participants
        ],
        created_at=chart.created_at,
    )


@router.post("", response_model=ChartResponse, status_code=201)
async def create(
    body: CreateChartRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Create a chart; the caller pays the entry fee and joins it."""
    chart = await create_chart(
        db,
        user.id,
        title=body.title,
        game=body.game,
        entry_fee=body.entry_fee,
        max_participants=body.max_participants,
        time_limit=body.time_limit,
        description=body.description,
        difficulty=body.difficulty,
        win_score=body.win_score,
        tags=body.tags,
    )
    return await _to_response(db, chart)


@router.get("/{chart_id}", response_model=ChartResponse)
async def detail(chart_id: int, db: AsyncSession = Depends(get_session)):
    return await _to_response(db, await get_chart(db, chart_id))


@router.post("/{chart_id}/join", response_model=JoinChartResponse)
async def join(
    chart_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    registry: ConnectionRegistry = Depends(get_registry),
):
    """Join a chart. Taking the last slot starts the match and opens its arena."""
    result = await join_chart(db, registry, chart_id, user.id)
    message = "Match started" if result.arena_id is not None else "Successfully joined chart"
    return JoinChartResponse(
        chart=await _to_response(db, result.chart),
        arena_id=result.arena_id,
        message=message,
    )
