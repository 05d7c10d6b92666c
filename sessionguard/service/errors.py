from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for HTTP-layer exceptions mapped to error envelopes.

    The engine itself never raises these; routes translate its structured
    denials into them. Each subclass defines an HTTP ``status_code`` and a
    stable ``error_code``:
    - unauthorized (401)
    - forbidden (403)
    - rate_limited (429)
    """

    status_code: int = 400
    error_code: str = "validation_error"

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


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class SessionInvalidError(AuthenticationError):
    """Session is unknown, expired, timed out or suspected hijacked (401).

    ``error_code`` carries the specific session denial so clients can
    decide between a silent re-login and a security notice.
    """


class ForbiddenError(ServiceError):
    """Access denied (403)."""
    status_code = 403
    error_code = "forbidden"


class CSRFValidationError(ForbiddenError):
    """State-mutating request without a valid anti-forgery token (403)."""
    error_code = "CSRF_INVALID_TOKEN"


class RateLimitedError(ServiceError):
    """Rate limit exceeded (429)."""
    status_code = 429
    error_code = "rate_limited"

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[int] = None,
        detail: Optional[dict] = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.retry_after = retry_after


__all__ = [
    "ServiceError",
    "AuthenticationError",
    "SessionInvalidError",
    "ForbiddenError",
    "CSRFValidationError",
    "RateLimitedError",
]
