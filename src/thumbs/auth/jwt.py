"""
RS256 JWT token management.

The same access token authenticates HTTP requests (bearer header) and the
realtime channel (``auth`` message).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import jwt

from thumbs.config import get_settings
from thumbs.errors import AuthError

_private_key: str | None = None
_public_key: str | None = None


def _load_keys() -> tuple[str, str]:
    """Load RSA keys from disk (cached after first call)."""
    global _private_key, _public_key  # noqa: PLW0603
    if _private_key is None or _public_key is None:
        settings = get_settings()
        _private_key = Path(settings.jwt_private_key_path).read_text()
        _public_key = Path(settings.jwt_public_key_path).read_text()
    return _private_key, _public_key


def reset_keys() -> None:
    """Reset cached keys (useful for testing)."""
    global _private_key, _public_key  # noqa: PLW0603
    _private_key = None
    _public_key = None


def create_access_token(user_id: int, username: str) -> str:
    """
    Create an access token.

    Args:
        user_id: The user's database ID.
        username: The user's handle, echoed for clients.

    Returns:
        Encoded JWT string.
    """
    private_key, _ = _load_keys()
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "username": username,
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_access_token_expire_minutes),
        "iss": settings.jwt_issuer,
        "type": "access",
    }
    return jwt.encode(payload, private_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str, expected_type: str = "access") -> dict[str, Any]:
    """
    Verify and decode a JWT token.

    Raises:
        AuthError: ``TOKEN_EXPIRED`` or ``INVALID_TOKEN``.
    """
    _, public_key = _load_keys()
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            public_key,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired", "TOKEN_EXPIRED") from None
    except jwt.InvalidTokenError as exc:
        raise AuthError("Invalid token", "INVALID_TOKEN") from exc

    if payload.get("type") != expected_type:
        raise AuthError(f"Expected token type '{expected_type}'", "INVALID_TOKEN")

    return payload


def user_id_from_token(token: str) -> int:
    payload = verify_token(token)
    try:
        return int(payload["sub"])
    except (KeyError, ValueError):
        raise AuthError("Invalid token", "INVALID_TOKEN") from None
