from __future__ import annotations

import time
from typing import Callable, List, Optional, Union

from sessionguard.config import Settings
from sessionguard.logging import get_logger
from sessionguard.service.attempts import AttemptLedger
from sessionguard.service.context import RequestContext, as_context
from sessionguard.service.csrf import CSRFGuard, DoubleSubmitCSRF, SignedCSRFTokenService
from sessionguard.service.heuristics import (
    AddressChurnDetector,
    AutomatedClientDetector,
    DeviceSimilarity,
    GeoAnomalyDetector,
    RequestRateDetector,
)
from sessionguard.service.mfa import MFAVerifier, RejectingMFAVerifier
from sessionguard.service.rate_limit import RateLimiter
from sessionguard.service.risk import RiskScorer
from sessionguard.service.sessions import SessionStore
from sessionguard.service.suspicion import SuspiciousActivityDetector
from sessionguard.storage.models import (
    AuthDecision,
    CSRFDecision,
    GeoLocation,
    RiskAssessment,
    SessionMetadata,
    SessionValidation,
)

logger = get_logger(__name__)


class SecurityEngine:
    """Entry point used by the request pipeline.

    Every call returns a structured result; nothing raises across this
    boundary for a policy denial. Components are injected so tests can run
    isolated instances against a controllable clock.
    """

    def __init__(
        self,
        *,
        ledger: AttemptLedger,
        detector: SuspiciousActivityDetector,
        rate_limiter: RateLimiter,
        sessions: SessionStore,
        risk: RiskScorer,
        csrf_tokens: SignedCSRFTokenService,
        csrf_guard: CSRFGuard,
        double_submit: Optional[DoubleSubmitCSRF] = None,
        mfa_verifier: Optional[MFAVerifier] = None,
    ) -> None:
        self.ledger = ledger
        self.detector = detector
        self.rate_limiter = rate_limiter
        self.sessions = sessions
        self.risk = risk
        self.csrf_tokens = csrf_tokens
        self.csrf_guard = csrf_guard
        self.double_submit = double_submit or csrf_guard.double_submit
        self.mfa_verifier: MFAVerifier = mfa_verifier or RejectingMFAVerifier()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        clock: Optional[Callable[[], float]] = None,
        similarity: Optional[DeviceSimilarity] = None,
        churn: Optional[AddressChurnDetector] = None,
        geo: Optional[GeoAnomalyDetector] = None,
        request_rate: Optional[RequestRateDetector] = None,
        mfa_verifier: Optional[MFAVerifier] = None,
    ) -> "SecurityEngine":
        clock = clock or time.time
        ledger = AttemptLedger(
            retention=settings.attempt_retention,
            window_seconds=settings.attempt_window_seconds,
            max_identities=settings.attempt_cache_size,
            clock=clock,
        )
        detector = SuspiciousActivityDetector(
            ttl_seconds=settings.suspicion_ttl_seconds,
            max_addresses=settings.suspicion_cache_size,
            clock=clock,
        )
        sessions = SessionStore(
            detector,
            max_age_seconds=settings.session_max_age_seconds,
            renew_threshold_seconds=settings.session_renew_threshold_seconds,
            idle_timeout_seconds=settings.session_idle_timeout_seconds,
            max_concurrent_sessions=settings.max_concurrent_sessions,
            max_sessions=settings.session_cache_size,
            similarity=similarity,
            churn=churn,
            clock=clock,
        )
        risk = RiskScorer(
            detector,
            sessions,
            AutomatedClientDetector(settings.automated_client_patterns),
            geo=geo,
            request_rate=request_rate,
            business_hours=(settings.business_hours_start, settings.business_hours_end),
            clock=clock,
        )
        double_submit = DoubleSubmitCSRF(token_bytes=settings.csrf_token_bytes)
        csrf_tokens = SignedCSRFTokenService(
            settings.csrf_secret or "",
            max_age_seconds=settings.csrf_max_age_seconds,
            token_bytes=settings.csrf_token_bytes,
            clock=clock,
        )
        return cls(
            ledger=ledger,
            detector=detector,
            rate_limiter=RateLimiter(ledger, detector, clock=clock),
            sessions=sessions,
            risk=risk,
            csrf_tokens=csrf_tokens,
            csrf_guard=CSRFGuard(
                csrf_tokens,
                double_submit=double_submit,
                exempt_routes=settings.csrf_exempt_routes,
            ),
            double_submit=double_submit,
            mfa_verifier=mfa_verifier,
        )

    # -- authentication attempts -------------------------------------------

    def record_auth_attempt(
        self,
        context_or_identity: Union[str, RequestContext],
        success: bool,
        user_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        """Record an attempt for a request context or an ``"ip:signature"`` identity key."""
        context = as_context(context_or_identity)
        attempt = self.ledger.record(context, success, user_id=user_id, reason=reason)
        self.detector.analyze_attempts(
            context.ip_address,
            self.ledger.attempts(attempt.identity_key),
            self.ledger.distinct_devices(context.ip_address),
        )
        if not success:
            logger.info(
                "auth_attempt_failed",
                ip_address=context.ip_address,
                user_id=user_id,
                reason=reason,
            )

    def is_auth_allowed(self, context_or_identity: Union[str, RequestContext]) -> AuthDecision:
        context = as_context(context_or_identity)
        return self.rate_limiter.is_allowed(context.identity_key, context.ip_address)

    # -- sessions -------------------------------------------------------------

    def create_session(
        self,
        user_id: str,
        context: RequestContext,
        *,
        mfa_verified: bool = False,
        location: Optional[GeoLocation] = None,
    ) -> SessionMetadata:
        return self.sessions.create(
            user_id, context, mfa_verified=mfa_verified, location=location
        )

    def validate_session(self, session_id: str, context: RequestContext) -> SessionValidation:
        return self.sessions.validate(session_id, context)

    def terminate_session(self, session_id: str) -> bool:
        return self.sessions.terminate(session_id)

    def terminate_all_sessions(self, user_id: str) -> int:
        return self.sessions.terminate_all(user_id)

    def get_user_sessions(self, user_id: str) -> List[SessionMetadata]:
        return self.sessions.user_sessions(user_id)

    def mark_mfa_verified(self, session_id: str) -> bool:
        return self.sessions.mark_mfa_verified(session_id)

    def verify_mfa(self, session_id: str, secret: str, code: str) -> bool:
        """Ask the MFA collaborator to check ``code`` and flag the session on success."""
        if not self.mfa_verifier.verify(secret, code):
            logger.info("mfa_verification_rejected")
            return False
        return self.sessions.mark_mfa_verified(session_id)

    # -- risk -----------------------------------------------------------------

    def assess_risk(self, context: RequestContext, user_id: Optional[str] = None) -> RiskAssessment:
        return self.risk.assess(context, user_id)

    # -- CSRF -----------------------------------------------------------------

    def generate_csrf_token(self) -> str:
        return self.csrf_tokens.generate()

    def validate_csrf_token(self, token: Optional[str]) -> bool:
        return self.csrf_tokens.validate(token)

    def check_csrf(self, method: str, path: str, token: Optional[str]) -> CSRFDecision:
        return self.csrf_guard.check(method, path, token)

    def validate_double_submit(
        self, cookie_token: Optional[str], header_token: Optional[str]
    ) -> bool:
        return self.double_submit.validate(cookie_token, header_token)

    def check_double_submit(
        self,
        method: str,
        path: str,
        cookie_token: Optional[str],
        header_token: Optional[str],
    ) -> CSRFDecision:
        return self.csrf_guard.check_double_submit(method, path, cookie_token, header_token)

    # -- maintenance ------------------------------------------------------------

    def purge_expired(self) -> int:
        purged = (
            self.ledger.purge_expired()
            + self.detector.purge_expired()
            + self.sessions.purge_expired()
        )
        if purged:
            logger.debug("security_state_purged", purged=purged)
        return purged
