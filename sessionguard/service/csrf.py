from __future__ import annotations

import hashlib
import hmac
import secrets
import time
from typing import Callable, Iterable, Optional

from sessionguard.logging import get_logger
from sessionguard.storage.models import AuthErrorCode, CSRFDecision

logger = get_logger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
CSRF_FAILURE_MESSAGE = "CSRF token validation failed"
DEFAULT_MAX_AGE_SECONDS = 24 * 60 * 60
DEFAULT_TOKEN_BYTES = 32
# Tolerate small clock skew between nodes issuing and checking tokens.
CLOCK_SKEW_LEEWAY_SECONDS = 120


def constant_time_equals(left: Optional[str], right: Optional[str]) -> bool:
    """Constant-time string comparison; ``None`` or empty never matches."""
    if not left or not right:
        return False
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


class SignedCSRFTokenService:
    """Stateless ``nonce:timestamp:signature`` tokens signed with HMAC-SHA256.

    Validity depends only on the token string and the signing secret; no
    server-side token table exists.
    """

    def __init__(
        self,
        secret: str,
        *,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        token_bytes: int = DEFAULT_TOKEN_BYTES,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if not secret:
            raise ValueError("CSRF signing secret is required")
        self._key = secret.encode("utf-8")
        self.max_age_seconds = float(max_age_seconds)
        self.token_bytes = token_bytes
        self._clock = clock or time.time

    def _sign(self, payload: str) -> str:
        return hmac.new(self._key, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def generate(self) -> str:
        nonce = secrets.token_hex(self.token_bytes)
        timestamp = str(int(self._clock() * 1000))
        payload = f"{nonce}:{timestamp}"
        return f"{payload}:{self._sign(payload)}"

    def validate(self, token: Optional[str]) -> bool:
        if not token or not isinstance(token, str):
            return False
        parts = token.split(":")
        if len(parts) != 3:
            return False
        nonce, timestamp, signature = parts
        if not nonce or not (timestamp.isascii() and timestamp.isdigit()):
            return False
        expected = self._sign(f"{nonce}:{timestamp}")
        if not constant_time_equals(signature, expected):
            return False
        age = self._clock() - int(timestamp) / 1000
        if age > self.max_age_seconds:
            return False
        if age < -CLOCK_SKEW_LEEWAY_SECONDS:
            return False
        return True


class DoubleSubmitCSRF:
    """Cookie-to-header token echo; the cookie value itself is the state."""

    def __init__(self, *, token_bytes: int = DEFAULT_TOKEN_BYTES) -> None:
        self.token_bytes = token_bytes

    def generate(self) -> str:
        return secrets.token_hex(self.token_bytes)

    def validate(self, cookie_token: Optional[str], header_token: Optional[str]) -> bool:
        return constant_time_equals(cookie_token, header_token)


class CSRFGuard:
    """Method/route policy in front of the token validators.

    Exempt routes pass untouched. Safe methods pass and are told whether a
    fresh token should be issued. Unsafe methods need a valid token.
    """

    def __init__(
        self,
        tokens: SignedCSRFTokenService,
        *,
        double_submit: Optional[DoubleSubmitCSRF] = None,
        exempt_routes: Iterable[str] = (),
        safe_methods: Iterable[str] = SAFE_METHODS,
    ) -> None:
        self.tokens = tokens
        self.double_submit = double_submit or DoubleSubmitCSRF(token_bytes=tokens.token_bytes)
        self.exempt_routes = tuple(r for r in exempt_routes if r)
        self.safe_methods = frozenset(m.upper() for m in safe_methods)

    def is_exempt_route(self, path: str) -> bool:
        return any(
            path == route or path.startswith(route.rstrip("/") + "/")
            for route in self.exempt_routes
        )

    def is_safe_method(self, method: str) -> bool:
        return method.upper() in self.safe_methods

    def _reject(self, method: str, path: str, has_token: bool) -> CSRFDecision:
        logger.warning(
            "csrf_validation_failed",
            method=method.upper(),
            path=path,
            has_token=has_token,
        )
        return CSRFDecision(
            allowed=False,
            error_code=AuthErrorCode.INVALID_CSRF_TOKEN.value,
            message=CSRF_FAILURE_MESSAGE,
        )

    def check(self, method: str, path: str, token: Optional[str]) -> CSRFDecision:
        """Signed-token policy; ``token`` is the header value on unsafe methods
        and the cookie value on safe ones."""
        if self.is_exempt_route(path):
            return CSRFDecision(allowed=True)
        if self.is_safe_method(method):
            return CSRFDecision(allowed=True, issue_token=not self.tokens.validate(token))
        if token and self.tokens.validate(token):
            return CSRFDecision(allowed=True)
        return self._reject(method, path, bool(token))

    def check_double_submit(
        self,
        method: str,
        path: str,
        cookie_token: Optional[str],
        header_token: Optional[str],
    ) -> CSRFDecision:
        if self.is_exempt_route(path):
            return CSRFDecision(allowed=True)
        if self.is_safe_method(method):
            return CSRFDecision(allowed=True, issue_token=not cookie_token)
        if self.double_submit.validate(cookie_token, header_token):
            return CSRFDecision(allowed=True)
        return self._reject(method, path, bool(header_token))
