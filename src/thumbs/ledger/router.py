"""Ledger API endpoints: transaction history and deposits."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from thumbs.auth.dependencies import get_current_user
from thumbs.database import get_session
from thumbs.db.models import User
from thumbs.errors import ValidationError
from thumbs.ledger.schemas import (
    DepositRequest,
    DepositResponse,
    TransactionListResponse,
    TransactionResponse,
)
from thumbs.ledger.service import LEDGER_TYPES, deposit, get_transactions

router = APIRouter(prefix="/api/v1", tags=["Ledger"])


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    type: str | None = Query(None),  # noqa: A002
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """List the caller's ledger entries (paginated, newest first)."""
    if type is not None and type not in LEDGER_TYPES:
        raise ValidationError(f"Unknown transaction type: {type}", "INVALID_TYPE")
    transactions, total = await get_transactions(db, user.id, page, per_page, type)
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/transactions/deposit", response_model=DepositResponse)
async def deposit_endpoint(
    body: DepositRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Credit the caller's internal balance."""
    entry = await deposit(db, user.id, body.amount)
    return DepositResponse(
        balance=entry.balance,
        transaction=TransactionResponse.model_validate(entry),
        message=f"Successfully deposited {body.amount} THB",
    )
