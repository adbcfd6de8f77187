"""Pydantic models for chart endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from thumbs.users.schemas import UserSummary


class CreateChartRequest(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    game: str = Field(min_length=1, max_length=64)
    difficulty: Literal["beginner", "intermediate", "advanced", "expert"] = "intermediate"
    entry_fee: int = Field(ge=0)
    max_participants: int = 2
    time_limit: int = 5
    win_score: int | None = Field(default=None, gt=0)
    tags: list[str] = Field(default_factory=list, max_length=10)


class ChartParticipantResponse(BaseModel):
    user_id: int
    user: UserSummary
    status: str
    joined_at: datetime


class ChartResponse(BaseModel):
    id: int
    creator_id: int
    title: str
    description: str
    game: str
    difficulty: str
    entry_fee: int
    prize_pool: int
    status: str
    participant_count: int
    max_participants: int
    min_participants: int
    time_limit: int
    win_score: int
    starts_at: datetime
    ends_at: datetime | None = None
    total_donations: int
    total_shoutouts: int
    tags: list[str]
    winner_id: int | None = None
    arena_id: int | None = None
    participants: list[ChartParticipantResponse]
    created_at: datetime


class JoinChartResponse(BaseModel):
    chart: ChartResponse
    arena_id: int | None = None
    message: str
