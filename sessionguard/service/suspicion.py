from __future__ import annotations

import time
from typing import Callable, Iterable, List, Optional

from sessionguard.logging import get_logger
from sessionguard.storage.models import AuthAttempt, SuspicionRecord, SuspiciousActivity
from sessionguard.storage.ttl_cache import BoundedTTLCache

logger = get_logger(__name__)

MAX_SUSPICION_SCORE = 100.0
DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_MAX_ADDRESSES = 10_000
# Tags kept per record; older tags drop off first.
MAX_ACTIVITY_TAGS = 50

FAILED_LOGIN_THRESHOLD = 5
RAPID_ATTEMPT_THRESHOLD = 10
DEVICE_DIVERSITY_THRESHOLD = 3

# Weight applied when an explicit event is recorded.
ACTIVITY_WEIGHTS = {
    SuspiciousActivity.SESSION_HIJACK_ATTEMPT: 30,
    SuspiciousActivity.CONCURRENT_SESSIONS_EXCEEDED: 15,
    SuspiciousActivity.LOGIN_FROM_NEW_LOCATION: 20,
}
DEFAULT_ACTIVITY_WEIGHT = 10


class SuspiciousActivityDetector:
    """Per-address suspicion accumulator.

    Scores only move upward; a record decays by expiring from the TTL cache,
    so nothing here is authoritative for longer than ``ttl_seconds`` after
    the last event.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_addresses: int = DEFAULT_MAX_ADDRESSES,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._clock = clock or time.time
        self._records: BoundedTTLCache[str, SuspicionRecord] = BoundedTTLCache(
            max_addresses, ttl_seconds, clock=self._clock
        )

    def get(self, ip_address: str) -> Optional[SuspicionRecord]:
        return self._records.peek(ip_address)

    def score(self, ip_address: str) -> float:
        record = self.get(ip_address)
        return record.score if record else 0.0

    def _raise(
        self, ip_address: str, increment: float, activities: Iterable[SuspiciousActivity]
    ) -> SuspicionRecord:
        tags = list(activities)
        now = self._clock()

        def _apply(current: Optional[SuspicionRecord]) -> SuspicionRecord:
            base = current or SuspicionRecord()
            merged: List[SuspiciousActivity] = (list(base.activities) + tags)[-MAX_ACTIVITY_TAGS:]
            return SuspicionRecord(
                score=min(base.score + increment, MAX_SUSPICION_SCORE),
                last_activity=now,
                activities=merged,
            )

        record = self._records.update(ip_address, _apply)
        logger.info(
            "suspicious_activity",
            ip_address=ip_address,
            activities=[t.value for t in tags],
            increment=increment,
            score=record.score,
        )
        return record

    def analyze_attempts(
        self,
        ip_address: str,
        attempts: List[AuthAttempt],
        distinct_devices: int,
    ) -> Optional[SuspicionRecord]:
        """Score the last hour of attempts for an address.

        ``attempts`` must already be restricted to the analysis window.
        Returns the updated record, or ``None`` when no rule fired.
        """
        increment = 0
        activities: List[SuspiciousActivity] = []

        failed = sum(1 for a in attempts if not a.success)
        if failed >= FAILED_LOGIN_THRESHOLD:
            increment += 20
            activities.append(SuspiciousActivity.MULTIPLE_FAILED_LOGINS)

        if len(attempts) >= RAPID_ATTEMPT_THRESHOLD:
            increment += 15
            activities.append(SuspiciousActivity.RAPID_REQUESTS)

        if distinct_devices > DEVICE_DIVERSITY_THRESHOLD:
            increment += 10
            activities.append(SuspiciousActivity.ANOMALOUS_BEHAVIOR)

        if not increment:
            return None
        return self._raise(ip_address, increment, activities)

    def record_activity(
        self, ip_address: str, activity: SuspiciousActivity
    ) -> SuspicionRecord:
        weight = ACTIVITY_WEIGHTS.get(activity, DEFAULT_ACTIVITY_WEIGHT)
        return self._raise(ip_address, weight, [activity])

    def purge_expired(self) -> int:
        return self._records.purge_expired()
