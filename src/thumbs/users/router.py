"""User endpoints used by the core flows."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from thumbs.auth.dependencies import get_current_user
from thumbs.db.models import User
from thumbs.users.schemas import MeResponse

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


@router.get("/me", response_model=MeResponse)
async def get_me(user: User = Depends(get_current_user)):
    """Current user's profile with balance and counters."""
    return MeResponse.model_validate(user)
