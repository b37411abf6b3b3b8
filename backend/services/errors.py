"""Auth error taxonomy.

Every error carries a stable ``error_code`` so clients can branch without
parsing prose, an HTTP ``status_code``, a ``message`` that is safe to show,
and optional per-field ``details`` (validation and conflict errors only).
"""

from typing import Optional


class AuthServiceError(Exception):
    """Base class for auth errors mapped to HTTP responses."""

    status_code: int = 500
    error_code: str = "internal_error"
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[dict] = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.error_code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AuthServiceError):
    """Malformed or missing input (400)."""
    status_code = 400
    error_code = "validation_error"
    default_message = "Invalid request"


class ConflictError(AuthServiceError):
    """Duplicate email or username (409)."""
    status_code = 409
    error_code = "conflict"
    default_message = "User already exists"


class InvalidCredentialsError(AuthServiceError):
    """Unknown email or wrong password, deliberately indistinguishable (401)."""
    status_code = 401
    error_code = "invalid_credentials"
    default_message = "Invalid email or password"


class AccountDeactivatedError(AuthServiceError):
    status_code = 401
    error_code = "account_deactivated"
    default_message = "Account has been deactivated"


class UnauthorizedError(AuthServiceError):
    """Missing bearer token, unknown or inactive user behind an access token (401)."""
    status_code = 401
    error_code = "unauthorized"
    default_message = "Access token required"


class TokenExpiredError(AuthServiceError):
    status_code = 401
    error_code = "token_expired"
    default_message = "Access token has expired"


class InvalidTokenError(AuthServiceError):
    """Bad signature, wrong token type, expired or revoked refresh token (401)."""
    status_code = 401
    error_code = "invalid_token"
    default_message = "Invalid token"


class InvalidUserError(AuthServiceError):
    """Token is valid but its subject is missing or deactivated (401)."""
    status_code = 401
    error_code = "invalid_user"
    default_message = "User not found or deactivated"


class RateLimitedError(AuthServiceError):
    status_code = 429
    error_code = "rate_limited"
    default_message = "Too many requests"

    def __init__(self, message: Optional[str] = None, *, retry_after: int = 0) -> None:
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retry_after"] = self.retry_after
        return body


class InternalError(AuthServiceError):
    """Catch-all for persistence and unexpected failures (500)."""


class PersistenceError(InternalError):
    """A credential store or ledger operation failed.

    The message shown to clients stays generic; the driver error is chained
    as ``__cause__`` and logged server-side only.
    """


__all__ = [
    "AuthServiceError",
    "ValidationError",
    "ConflictError",
    "InvalidCredentialsError",
    "AccountDeactivatedError",
    "UnauthorizedError",
    "TokenExpiredError",
    "InvalidTokenError",
    "InvalidUserError",
    "RateLimitedError",
    "InternalError",
    "PersistenceError",
]
