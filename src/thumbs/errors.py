"""Error taxonomy shared by HTTP handlers and the realtime dispatcher.

Every error carries a short machine-readable ``code`` and a human message.
HTTP handlers translate them to ``status_code``; the realtime channel sends
them back as ``error`` envelopes to the originating connection only.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for expected, user-facing failures."""

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict[str, str]:
        return {"detail": self.message, "code": self.code}


class ValidationError(AppError):
    """Malformed or out-of-range input."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    """Referenced entity does not exist."""

    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(AppError):
    """State precondition violated (insufficient balance, chart full, ...)."""

    status_code = 409
    default_code = "CONFLICT"


class AuthError(AppError):
    """Missing, invalid or expired credential."""

    status_code = 401
    default_code = "INVALID_TOKEN"


class ForbiddenError(AuthError):
    """Authenticated, but not allowed to act on the resource."""

    status_code = 403
    default_code = "FORBIDDEN"


class InternalError(AppError):
    """Persistence or otherwise unexpected failure."""

    status_code = 500
    default_code = "INTERNAL_ERROR"
