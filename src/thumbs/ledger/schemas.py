"""Pydantic schemas for ledger endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    amount: int
    balance: int
    reference_type: str | None = None
    reference_id: int | None = None
    description: str
    status: str
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="tx_metadata")
    created_at: datetime


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse]
    total: int
    page: int
    per_page: int


class DepositRequest(BaseModel):
    amount: int


class DepositResponse(BaseModel):
    balance: int
    transaction: TransactionResponse
    message: str
