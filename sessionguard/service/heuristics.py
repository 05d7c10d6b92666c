"""Pluggable heuristics consumed by the session store and risk scorer.

Each heuristic is a small strategy behind a ``Protocol`` so stronger
implementations (fingerprinting, geolocation services, request-rate
tracking) can be injected without touching the state machine.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional, Protocol, Sequence

from sessionguard.storage.models import GeoLocation, SessionMetadata

_SIGNATURE_SPLIT = re.compile(r"[\s/()]+")


class DeviceSimilarity(Protocol):
    def similarity(self, recorded: str, current: str) -> float: ...


class JaccardDeviceSimilarity:
    """Token-set overlap of normalized device signatures, 0.0 to 1.0."""

    @staticmethod
    def tokens(signature: str) -> set[str]:
        return {t for t in _SIGNATURE_SPLIT.split(signature.lower()) if t}

    def similarity(self, recorded: str, current: str) -> float:
        if recorded == current:
            return 1.0
        left = self.tokens(recorded)
        right = self.tokens(current)
        union = left | right
        if not union:
            return 1.0
        return len(left & right) / len(union)


class AutomatedClientDetector:
    """Matches device signatures against known scripted/headless markers."""

    def __init__(self, patterns: Iterable[str]) -> None:
        self.patterns: Sequence[str] = [p.lower() for p in patterns if p]

    def is_automated(self, device_signature: str) -> bool:
        lowered = (device_signature or "").lower()
        return any(pattern in lowered for pattern in self.patterns)


class GeoAnomalyDetector(Protocol):
    def is_anomalous(
        self, user_id: str, ip_address: str, known_location: Optional[GeoLocation]
    ) -> bool: ...


class AddressChurnDetector(Protocol):
    def has_rapid_churn(self, session: SessionMetadata, current_ip: str) -> bool: ...


class RequestRateDetector(Protocol):
    def is_rapid(self, ip_address: str) -> bool: ...


class NoGeoAnomaly:
    """Default when no geolocation service is configured."""

    def is_anomalous(
        self, user_id: str, ip_address: str, known_location: Optional[GeoLocation]
    ) -> bool:
        return False


class NoAddressChurn:
    """Default when per-session address history is not tracked."""

    def has_rapid_churn(self, session: SessionMetadata, current_ip: str) -> bool:
        return False


class NoRapidRequests:
    """Default when request-rate tracking is not wired in."""

    def is_rapid(self, ip_address: str) -> bool:
        return False
