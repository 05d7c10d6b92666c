from __future__ import annotations

import time
from datetime import datetime
from typing import Callable, List, Optional

from sessionguard.service.context import RequestContext
from sessionguard.service.heuristics import (
    AutomatedClientDetector,
    GeoAnomalyDetector,
    NoGeoAnomaly,
    NoRapidRequests,
    RequestRateDetector,
)
from sessionguard.service.sessions import SessionStore
from sessionguard.service.suspicion import SuspiciousActivityDetector
from sessionguard.storage.models import RiskAssessment

FACTOR_SUSPICIOUS_ADDRESS = "address has suspicious history"
FACTOR_UNUSUAL_TIME = "unusual access time"
FACTOR_SESSION_CAP = "maximum concurrent sessions reached"
FACTOR_UNUSUAL_LOCATION = "login from unusual location"
FACTOR_AUTOMATED_CLIENT = "automated client signature detected"
FACTOR_RAPID_REQUESTS = "rapid request pattern detected"

MFA_THRESHOLD = 40
REAUTH_THRESHOLD = 60
BLOCK_THRESHOLD = 85

_FACTOR_RECOMMENDATIONS = {
    FACTOR_SUSPICIOUS_ADDRESS: "Consider accessing from a trusted network",
    FACTOR_UNUSUAL_TIME: "Verify this access time is expected",
    FACTOR_AUTOMATED_CLIENT: "Use a standard web browser for better security",
    FACTOR_UNUSUAL_LOCATION: "Confirm this login location is expected",
    FACTOR_SESSION_CAP: "Review active sessions and terminate unknown ones",
}


def recommendations_for(score: float, factors: List[str]) -> List[str]:
    """Advisory follow-ups for the user; never enforced by the engine."""
    recommendations: List[str] = []
    if score > 70:
        recommendations.append("Enable two-factor authentication immediately")
        recommendations.append("Review account for suspicious activity")
    if score > 50:
        recommendations.append("Change password if not done recently")
        recommendations.append("Review active sessions and terminate unknown ones")
    for factor in factors:
        advice = _FACTOR_RECOMMENDATIONS.get(factor)
        if advice and advice not in recommendations:
            recommendations.append(advice)
    return recommendations


class RiskScorer:
    """Additive 0–100 request risk, recomputed on every call."""

    def __init__(
        self,
        detector: SuspiciousActivityDetector,
        sessions: SessionStore,
        automated: AutomatedClientDetector,
        *,
        geo: Optional[GeoAnomalyDetector] = None,
        request_rate: Optional[RequestRateDetector] = None,
        business_hours: tuple[int, int] = (6, 22),
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.detector = detector
        self.sessions = sessions
        self.automated = automated
        self.geo: GeoAnomalyDetector = geo or NoGeoAnomaly()
        self.request_rate: RequestRateDetector = request_rate or NoRapidRequests()
        self.business_hours = business_hours
        self._clock = clock or time.time

    def _outside_hours(self) -> bool:
        # Local server time; the hour boundaries themselves count as inside.
        hour = datetime.fromtimestamp(self._clock()).hour
        start, end = self.business_hours
        return hour < start or hour > end

    def assess(self, context: RequestContext, user_id: Optional[str] = None) -> RiskAssessment:
        score = 0.0
        factors: List[str] = []

        record = self.detector.get(context.ip_address)
        if record is not None:
            score += min(record.score, 30)
            factors.append(FACTOR_SUSPICIOUS_ADDRESS)

        if self._outside_hours():
            score += 10
            factors.append(FACTOR_UNUSUAL_TIME)

        if user_id:
            sessions = self.sessions.user_sessions(user_id)
            if len(sessions) >= self.sessions.max_concurrent_sessions:
                score += 20
                factors.append(FACTOR_SESSION_CAP)
            known_location = next((s.location for s in sessions if s.location), None)
            if self.geo.is_anomalous(user_id, context.ip_address, known_location):
                score += 25
                factors.append(FACTOR_UNUSUAL_LOCATION)

        if self.automated.is_automated(context.device_signature):
            score += 30
            factors.append(FACTOR_AUTOMATED_CLIENT)

        if self.request_rate.is_rapid(context.ip_address):
            score += 15
            factors.append(FACTOR_RAPID_REQUESTS)

        score = min(score, 100.0)
        return RiskAssessment(
            score=score,
            factors=factors,
            require_mfa=score > MFA_THRESHOLD,
            require_reauth=score > REAUTH_THRESHOLD,
            block_access=score > BLOCK_THRESHOLD,
            recommendations=recommendations_for(score, factors),
        )
