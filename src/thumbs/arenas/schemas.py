"""Pydantic models for arena endpoints and realtime arena payloads."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from thumbs.users.schemas import UserSummary


class ArenaPlayerResponse(BaseModel):
    user_id: int
    user: UserSummary
    score: int
    moves: int
    status: str


class ArenaSpectatorResponse(BaseModel):
    user_id: int
    user: UserSummary
    joined_at: datetime


class ArenaChatResponse(BaseModel):
    id: int
    user_id: int | None
    user: UserSummary | None = None
    type: str
    message: str
    created_at: datetime


class ArenaDetailResponse(BaseModel):
    """Full arena snapshot, also sent as the ``arena_state`` payload."""

    id: int
    chart_id: int
    chart_title: str
    game: str
    status: str
    current_round: int
    total_rounds: int
    win_score: int
    entry_fee: int
    winner_id: int | None = None
    prize: int | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    players: list[ArenaPlayerResponse]
    spectators: list[ArenaSpectatorResponse]
    chat: list[ArenaChatResponse]


class LiveArenaResponse(BaseModel):
    id: int
    chart_id: int
    chart_title: str
    game: str
    status: str
    player_count: int
    spectator_count: int
    started_at: datetime | None = None


class LiveArenaListResponse(BaseModel):
    arenas: list[LiveArenaResponse]
    total: int


class CompleteArenaRequest(BaseModel):
    winner_id: int | None = None


class SettlementResponse(BaseModel):
    arena_id: int
    winner_id: int | None
    prize: int
    already_settled: bool


class ArenaStatusResponse(BaseModel):
    arena_id: int
    status: str
