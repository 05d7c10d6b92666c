from __future__ import annotations

import math
import time
from typing import Callable, Optional

from sessionguard.service.attempts import AttemptLedger
from sessionguard.service.suspicion import SuspiciousActivityDetector
from sessionguard.storage.models import AuthDecision, AuthErrorCode

FAILURE_WINDOW_SECONDS = 15 * 60
LOCKOUT_THRESHOLD = 10
LOCKOUT_SECONDS = 60 * 60
THROTTLE_THRESHOLD = 5
THROTTLE_SECONDS = 15 * 60
BACKOFF_THRESHOLD = 3
BACKOFF_BASE_SECONDS = 300
BACKOFF_CAP_SECONDS = 900
SUSPICION_BLOCK_SCORE = 80
SUSPICION_BLOCK_SECONDS = 60 * 60


def backoff_delay(failures: int) -> int:
    """Required quiet period after ``failures`` recent failures (3 → 300s, 4 → 600s, capped at 900s)."""
    if failures < BACKOFF_THRESHOLD:
        return 0
    return min(BACKOFF_BASE_SECONDS * 2 ** (failures - BACKOFF_THRESHOLD), BACKOFF_CAP_SECONDS)


class RateLimiter:
    """Derive allow/deny decisions for login attempts.

    Pure read of ledger and suspicion state: the caller enforces the delay,
    typically as HTTP 429 with ``Retry-After``.
    """

    def __init__(
        self,
        ledger: AttemptLedger,
        detector: SuspiciousActivityDetector,
        *,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.ledger = ledger
        self.detector = detector
        self._clock = clock or time.time

    def _denied(self, reason: str, retry_after: int) -> AuthDecision:
        return AuthDecision(
            allowed=False,
            reason=reason,
            retry_after_seconds=retry_after,
            error=AuthErrorCode.RATE_LIMITED,
        )

    def is_allowed(self, identity_key: str, ip_address: str) -> AuthDecision:
        failures = self.ledger.recent_failures(identity_key, FAILURE_WINDOW_SECONDS)
        count = len(failures)

        if count >= LOCKOUT_THRESHOLD:
            return self._denied("too many failed attempts", LOCKOUT_SECONDS)
        if count >= THROTTLE_THRESHOLD:
            return self._denied("multiple failed attempts", THROTTLE_SECONDS)
        if count >= BACKOFF_THRESHOLD:
            required = backoff_delay(count)
            elapsed = self._clock() - failures[-1].timestamp
            if elapsed < required:
                return self._denied("rate limited", max(1, math.ceil(required - elapsed)))

        if self.detector.score(ip_address) > SUSPICION_BLOCK_SCORE:
            return self._denied("address marked as suspicious", SUSPICION_BLOCK_SECONDS)

        return AuthDecision(allowed=True)
