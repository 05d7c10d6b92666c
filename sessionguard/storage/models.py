from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class SuspiciousActivity(str, Enum):
    """Tags recorded against a network address's suspicion record."""

    MULTIPLE_FAILED_LOGINS = "multiple_failed_logins"
    LOGIN_FROM_NEW_LOCATION = "login_from_new_location"
    UNUSUAL_TIME_PATTERN = "unusual_time_pattern"
    CONCURRENT_SESSIONS_EXCEEDED = "concurrent_sessions_exceeded"
    SESSION_HIJACK_ATTEMPT = "session_hijack_attempt"
    RAPID_REQUESTS = "rapid_requests"
    ANOMALOUS_BEHAVIOR = "anomalous_behavior"


class AuthErrorCode(str, Enum):
    """Machine-readable denial codes returned across the engine boundary."""

    RATE_LIMITED = "rate_limited"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_EXPIRED = "session_expired"
    SESSION_TIMED_OUT = "session_timed_out"
    HIJACK_SUSPECTED = "hijack_suspected"
    INVALID_CSRF_TOKEN = "CSRF_INVALID_TOKEN"


@dataclass(frozen=True)
class AuthAttempt:
    identity_key: str
    ip_address: str
    device_signature: str
    timestamp: float
    success: bool
    user_id: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class GeoLocation:
    country: str
    city: str
    coordinates: Optional[Tuple[float, float]] = None


@dataclass
class SessionMetadata:
    id: str
    user_id: str
    created_at: float
    last_activity: float
    ip_address: str
    device_signature: str
    created_ip_address: str
    created_device_signature: str
    is_secure: bool = False
    mfa_verified: bool = False
    risk_score: float = 0.0
    location: Optional[GeoLocation] = None

    def age(self, now: float) -> float:
        return now - self.created_at

    def idle_for(self, now: float) -> float:
        return now - self.last_activity


@dataclass
class SuspicionRecord:
    score: float = 0.0
    last_activity: float = 0.0
    activities: List[SuspiciousActivity] = field(default_factory=list)


@dataclass
class RiskAssessment:
    score: float
    factors: List[str] = field(default_factory=list)
    require_mfa: bool = False
    require_reauth: bool = False
    block_access: bool = False
    recommendations: List[str] = field(default_factory=list)


@dataclass
class AuthDecision:
    allowed: bool
    reason: Optional[str] = None
    retry_after_seconds: Optional[int] = None
    error: Optional[AuthErrorCode] = None


@dataclass
class SessionValidation:
    valid: bool
    session: Optional[SessionMetadata] = None
    require_reauth: bool = False
    reason: Optional[str] = None
    error: Optional[AuthErrorCode] = None


@dataclass
class HijackCheck:
    detected: bool
    confidence: int
    signals: List[str] = field(default_factory=list)


@dataclass
class CSRFDecision:
    allowed: bool
    error_code: Optional[str] = None
    message: Optional[str] = None
    # Safe requests without a usable token should be handed a fresh one.
    issue_token: bool = False
