"""Pydantic models for donation and shoutout endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class DonationRequest(BaseModel):
    chart_id: int
    recipient_id: int
    amount: int
    message: str = Field(default="", max_length=280)


class DonationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    chart_id: int
    recipient_id: int
    amount: int
    message: str
    status: str
    transaction_id: str | None
    completed_at: datetime | None = None
    created_at: datetime


class ShoutoutRequest(BaseModel):
    chart_id: int
    recipient_id: int
    message: str = Field(default="", max_length=280)
    amount: int = Field(default=0, ge=0)


class ShoutoutResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    chart_id: int
    recipient_id: int
    message: str
    amount: int
    created_at: datetime
    recipient_reputation: float | None = None
