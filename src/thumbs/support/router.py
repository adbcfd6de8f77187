"""Donation and shoutout endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from thumbs.auth.dependencies import get_current_user
from thumbs.database import get_session
from thumbs.db.models import User
from thumbs.dependencies import get_registry
from thumbs.support.schemas import (
    DonationRequest,
    DonationResponse,
    ShoutoutRequest,
    ShoutoutResponse,
)
from thumbs.support.service import donate, shoutout
from thumbs.ws.registry import ConnectionRegistry

router = APIRouter(prefix="/api/v1", tags=["Support"])


@router.post("/donations", response_model=DonationResponse, status_code=201)
async def create_donation(
    body: DonationRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    registry: ConnectionRegistry = Depends(get_registry),
):
    """Donate part of the caller's balance to a chart participant."""
    donation = await donate(
        db, registry, user.id, body.chart_id, body.recipient_id, body.amount, body.message,
    )
    return DonationResponse.model_validate(donation)


@router.post("/shoutouts", response_model=ShoutoutResponse, status_code=201)
async def create_shoutout(
    body: ShoutoutRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    registry: ConnectionRegistry = Depends(get_registry),
):
    entry, reputation = await shoutout(
        db, registry, user.id, body.chart_id, body.recipient_id, body.message, body.amount,
    )
    response = ShoutoutResponse.model_validate(entry)
    response.recipient_reputation = reputation
    return response
