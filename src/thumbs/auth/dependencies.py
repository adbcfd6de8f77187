"""FastAPI authentication dependencies."""

from __future__ import annotations

from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from thumbs.auth.jwt import user_id_from_token
from thumbs.database import get_session
from thumbs.db.models import User
from thumbs.errors import AuthError, ForbiddenError
from thumbs.users.service import get_user_by_id

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Extract and verify the bearer JWT, return the User model.

    Raises AuthError (401) / ForbiddenError (403) on failure.
    """
    if credentials is None:
        raise AuthError("Access token required", "NO_TOKEN")

    user = await get_user_by_id(db, user_id_from_token(credentials.credentials))
    if user is None:
        raise AuthError("User not found", "INVALID_TOKEN")
    if user.is_banned:
        raise ForbiddenError("Account is banned", "ACCOUNT_BANNED")
    return user
