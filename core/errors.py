"""
core/errors.py -- Typed failures surfaced by the credential and ownership layers.

Every error carries the HTTP status and machine code the API envelope uses, so
api/main.py can translate any TaskNestError with a single exception handler.
Services raise these; they never raise HTTPException.
"""

from __future__ import annotations


class TaskNestError(Exception):
    """Base class for every failure the service layer reports to a caller."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Conflict(TaskNestError):
    """Duplicate email or username among live principals."""

    status_code = 409
    code = "conflict"
    default_message = "Username or email already exists."


class Unauthorized(TaskNestError):
    """Bad credentials, or a token with a bad signature or elapsed expiry."""

    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class TokenExpired(Unauthorized):
    default_message = "Token has expired."


class TokenInvalid(Unauthorized):
    default_message = "Token is invalid."


class InvalidOrExpiredToken(TaskNestError):
    """A verification or password-reset token that is unknown, consumed, or lapsed."""

    status_code = 400
    code = "invalid_or_expired_token"
    default_message = "Invalid or expired token."


class Forbidden(TaskNestError):
    """Authenticated, but not the owner of the target resource."""

    status_code = 403
    code = "forbidden"
    default_message = "You are not allowed to access this resource."


class NotFound(TaskNestError):
    """Resource absent or soft-deleted. Never reveals which."""

    status_code = 404
    code = "not_found"
    default_message = "Resource not found."
