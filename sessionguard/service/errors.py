from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    ``message`` is operator-facing and goes to the logs only. Clients see
    ``public_message``, which is fixed per category so a response never
    reveals which check failed. Stable error codes:
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - rate_limited (429)
    - validation_error (400)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"
    public_message: str = "invalid request"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"
    public_message = "invalid request"


class AuthenticationError(ServiceError):
    """Bad credentials or an unusable token (401)."""
    status_code = 401
    error_code = "unauthorized"
    public_message = "invalid session, please re-authenticate"


class InvalidTokenError(AuthenticationError):
    """Token is malformed, badly signed, expired or unknown."""


class TokenRevokedError(AuthenticationError):
    """Access token was revoked by logout before its expiry."""


class UnknownSubjectError(AuthenticationError):
    """Token is well formed but its subject no longer exists."""


class ForbiddenError(ServiceError):
    """Access denied (403)."""
    status_code = 403
    error_code = "forbidden"
    public_message = "access denied"


class InactiveAccountError(ForbiddenError):
    public_message = "account is disabled"


class InsufficientRoleError(ForbiddenError):
    public_message = "insufficient permissions"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"
    public_message = "resource not found"


class ConflictError(ServiceError):
    """Resource conflict (409)."""
    status_code = 409
    error_code = "conflict"
    public_message = "resource conflict"


class DuplicateIdentityError(ConflictError):
    public_message = "username or phone already exists"


class TokenReusedError(ConflictError):
    """A refresh token was presented after it had already been rotated."""
    public_message = AuthenticationError.public_message


class RateLimitedError(ServiceError):
    """Rate limit exceeded (429)."""
    status_code = 429
    error_code = "rate_limited"
    public_message = "rate limit exceeded"

    @property
    def retry_after(self) -> int:
        return int(self.detail.get("retry_after", 0))


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"
    public_message = "internal server error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "InvalidTokenError",
    "TokenRevokedError",
    "UnknownSubjectError",
    "ForbiddenError",
    "InactiveAccountError",
    "InsufficientRoleError",
    "NotFoundError",
    "ConflictError",
    "DuplicateIdentityError",
    "TokenReusedError",
    "RateLimitedError",
    "ServerError",
]
