from __future__ import annotations

from typing import Any, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sessionguard.storage.models import (
    AuthDecision,
    RiskAssessment,
    SessionMetadata,
    SessionValidation,
)

# Stable error codes; session denials use their specific engine codes.
_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "rate_limited",
    "validation_error",
    "server_error",
    "session_not_found",
    "session_expired",
    "session_timed_out",
    "hijack_suspected",
    "CSRF_INVALID_TOKEN",
})

MAX_IDENTIFIER_LENGTH = 256
MAX_REASON_LENGTH = 512


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope format."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class AuthAttemptRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    user_id: Optional[str] = Field(None, max_length=MAX_IDENTIFIER_LENGTH)
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)


class AuthDecisionResponse(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    retry_after_seconds: Optional[int] = None

    @classmethod
    def from_decision(cls, decision: AuthDecision) -> "AuthDecisionResponse":
        return cls(
            allowed=decision.allowed,
            reason=decision.reason,
            retry_after_seconds=decision.retry_after_seconds,
        )


class LocationModel(BaseModel):
    country: str = Field(..., max_length=128)
    city: str = Field(..., max_length=128)
    coordinates: Optional[Tuple[float, float]] = None


class CreateSessionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(..., min_length=1, max_length=MAX_IDENTIFIER_LENGTH)
    mfa_verified: bool = False
    location: Optional[LocationModel] = None


class SessionResponse(BaseModel):
    """Public view of a session; network identity fields are omitted."""

    session_id: str
    user_id: str
    created_at: float
    last_activity: float
    mfa_verified: bool
    risk_score: float
    is_secure: bool

    @classmethod
    def from_session(cls, session: SessionMetadata) -> "SessionResponse":
        return cls(
            session_id=session.id,
            user_id=session.user_id,
            created_at=session.created_at,
            last_activity=session.last_activity,
            mfa_verified=session.mfa_verified,
            risk_score=session.risk_score,
            is_secure=session.is_secure,
        )


class SessionValidationResponse(BaseModel):
    valid: bool
    require_reauth: bool = False
    session: Optional[SessionResponse] = None

    @classmethod
    def from_validation(cls, result: SessionValidation) -> "SessionValidationResponse":
        return cls(
            valid=result.valid,
            require_reauth=result.require_reauth,
            session=SessionResponse.from_session(result.session) if result.session else None,
        )


class SessionListResponse(BaseModel):
    items: List[SessionResponse]


class TerminateResponse(BaseModel):
    terminated: int


class MFAVerifyRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    secret: str = Field(..., min_length=1, max_length=256)
    code: str = Field(..., min_length=4, max_length=32)


class RiskResponse(BaseModel):
    score: float
    factors: List[str]
    require_mfa: bool
    require_reauth: bool
    block_access: bool
    recommendations: List[str]

    @classmethod
    def from_assessment(cls, assessment: RiskAssessment) -> "RiskResponse":
        return cls(
            score=assessment.score,
            factors=list(assessment.factors),
            require_mfa=assessment.require_mfa,
            require_reauth=assessment.require_reauth,
            block_access=assessment.block_access,
            recommendations=list(assessment.recommendations),
        )


class CSRFTokenResponse(BaseModel):
    token: str
    header_name: str


class HealthResponse(BaseModel):
    status: str
    sessions: int
