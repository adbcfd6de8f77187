"""Pydantic schemas for user payloads."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class UserSummary(BaseModel):
    """Public identity embedded in arena state, chat entries and events."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    display_name: str
    avatar_url: str | None = None
    reputation: float
    is_verified: bool = False


class MeResponse(UserSummary):
    balance: int
    total_earned: int
    total_supported: int
    charts_created: int
    charts_won: int
    status: str
    last_seen: datetime | None = None
