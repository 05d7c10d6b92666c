from __future__ import annotations

import time
from typing import Callable, Dict, List, Optional

from sessionguard.service.context import RequestContext
from sessionguard.storage.models import AuthAttempt
from sessionguard.storage.ttl_cache import BoundedTTLCache

DEFAULT_RETENTION = 20
DEFAULT_WINDOW_SECONDS = 60 * 60
DEFAULT_MAX_IDENTITIES = 10_000
# Distinct device signatures remembered per address; enough to cross the
# anomaly threshold without letting one address grow without bound.
MAX_DEVICES_PER_ADDRESS = 32


class AttemptLedger:
    """Sliding-window record of authentication attempts per identity key."""

    def __init__(
        self,
        *,
        retention: int = DEFAULT_RETENTION,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        max_identities: int = DEFAULT_MAX_IDENTITIES,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.retention = retention
        self.window_seconds = float(window_seconds)
        self._clock = clock or time.time
        self._attempts: BoundedTTLCache[str, List[AuthAttempt]] = BoundedTTLCache(
            max_identities, window_seconds, clock=self._clock
        )
        self._devices: BoundedTTLCache[str, Dict[str, float]] = BoundedTTLCache(
            max_identities, window_seconds, clock=self._clock
        )

    def record(
        self,
        context: RequestContext,
        success: bool,
        user_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> AuthAttempt:
        now = self._clock()
        attempt = AuthAttempt(
            identity_key=context.identity_key,
            ip_address=context.ip_address,
            device_signature=context.device_signature,
            timestamp=now,
            success=success,
            user_id=user_id,
            reason=reason,
        )

        def _append(current: Optional[List[AuthAttempt]]) -> List[AuthAttempt]:
            attempts = list(current or [])
            attempts.append(attempt)
            return attempts[-self.retention :]

        self._attempts.update(attempt.identity_key, _append)

        def _touch(current: Optional[Dict[str, float]]) -> Dict[str, float]:
            horizon = now - self.window_seconds
            devices = {sig: ts for sig, ts in (current or {}).items() if ts > horizon}
            devices[context.device_signature] = now
            if len(devices) > MAX_DEVICES_PER_ADDRESS:
                newest = sorted(devices.items(), key=lambda item: item[1])
                devices = dict(newest[-MAX_DEVICES_PER_ADDRESS:])
            return devices

        self._devices.update(context.ip_address, _touch)
        return attempt

    def attempts(self, identity_key: str) -> List[AuthAttempt]:
        """All retained attempts inside the rolling window, oldest first."""
        return self.recent(identity_key, self.window_seconds)

    def recent(self, identity_key: str, window_seconds: float) -> List[AuthAttempt]:
        now = self._clock()
        stored = self._attempts.peek(identity_key) or []
        return [a for a in stored if now - a.timestamp < window_seconds]

    def recent_failures(self, identity_key: str, window_seconds: float) -> List[AuthAttempt]:
        return [a for a in self.recent(identity_key, window_seconds) if not a.success]

    def distinct_devices(self, ip_address: str, window_seconds: Optional[float] = None) -> int:
        window = self.window_seconds if window_seconds is None else window_seconds
        now = self._clock()
        devices = self._devices.peek(ip_address) or {}
        return sum(1 for ts in devices.values() if now - ts < window)

    def purge_expired(self) -> int:
        return self._attempts.purge_expired() + self._devices.purge_expired()
