from __future__ import annotations

import secrets
import threading
import time
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Set

from sessionguard.logging import get_logger
from sessionguard.service.context import RequestContext
from sessionguard.service.heuristics import (
    AddressChurnDetector,
    DeviceSimilarity,
    JaccardDeviceSimilarity,
    NoAddressChurn,
)
from sessionguard.service.suspicion import SuspiciousActivityDetector
from sessionguard.storage.models import (
    AuthErrorCode,
    GeoLocation,
    HijackCheck,
    SessionMetadata,
    SessionValidation,
    SuspiciousActivity,
)
from sessionguard.storage.ttl_cache import BoundedTTLCache

logger = get_logger(__name__)

DEFAULT_MAX_AGE_SECONDS = 24 * 60 * 60
DEFAULT_RENEW_THRESHOLD_SECONDS = 60 * 60
DEFAULT_IDLE_TIMEOUT_SECONDS = 30 * 60
DEFAULT_MAX_CONCURRENT_SESSIONS = 5
DEFAULT_MAX_SESSIONS = 50_000

HIJACK_CONFIDENCE_THRESHOLD = 60
HIJACK_ADDRESS_WEIGHT = 40
HIJACK_DEVICE_WEIGHT = 30
HIJACK_CHURN_WEIGHT = 30
DEVICE_SIMILARITY_FLOOR = 0.7
REAUTH_RISK_THRESHOLD = 70


class SessionStore:
    """In-memory session lifecycle: create, validate, renew, evict, terminate.

    Sessions are removed on explicit termination, absolute expiry, idle
    timeout or suspected hijacking. Expiry is checked lazily on every
    validation; ``purge_expired`` is only a memory-reclamation helper.
    """

    def __init__(
        self,
        detector: SuspiciousActivityDetector,
        *,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        renew_threshold_seconds: float = DEFAULT_RENEW_THRESHOLD_SECONDS,
        idle_timeout_seconds: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        max_concurrent_sessions: int = DEFAULT_MAX_CONCURRENT_SESSIONS,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        similarity: Optional[DeviceSimilarity] = None,
        churn: Optional[AddressChurnDetector] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.detector = detector
        self.max_age_seconds = float(max_age_seconds)
        self.renew_threshold_seconds = float(renew_threshold_seconds)
        self.idle_timeout_seconds = float(idle_timeout_seconds)
        self.max_concurrent_sessions = max_concurrent_sessions
        self.similarity: DeviceSimilarity = similarity or JaccardDeviceSimilarity()
        self.churn: AddressChurnDetector = churn or NoAddressChurn()
        self._clock = clock or time.time
        # Cache TTL outlives max_age so an overdue session still reports
        # "expired" instead of vanishing as "not found".
        self._sessions: BoundedTTLCache[str, SessionMetadata] = BoundedTTLCache(
            max_sessions, max_age_seconds + idle_timeout_seconds, clock=self._clock
        )
        self._user_index: Dict[str, Set[str]] = {}
        self._lock = threading.RLock()

    # -- scoring -----------------------------------------------------------

    def session_risk(
        self, session: SessionMetadata, context: RequestContext, now: float
    ) -> float:
        """Session-specific risk on a 0–100 scale."""
        score = 0.0
        age_hours = session.age(now) / 3600
        if age_hours > 12:
            score += 10
        if age_hours > 24:
            score += 20
        if session.created_ip_address != context.ip_address:
            score += 30
        if session.created_device_signature != context.device_signature:
            score += 20
        if not session.mfa_verified:
            score += 15
        suspicion = self.detector.score(context.ip_address)
        if suspicion:
            score += min(suspicion / 4, 25)
        return min(score, 100.0)

    def detect_hijacking(
        self, session: SessionMetadata, context: RequestContext
    ) -> HijackCheck:
        confidence = 0
        signals: List[str] = []
        if session.ip_address != context.ip_address:
            confidence += HIJACK_ADDRESS_WEIGHT
            signals.append("address_changed")
        similarity = self.similarity.similarity(
            session.device_signature, context.device_signature
        )
        if similarity < DEVICE_SIMILARITY_FLOOR:
            confidence += HIJACK_DEVICE_WEIGHT
            signals.append("device_changed")
        if self.churn.has_rapid_churn(session, context.ip_address):
            confidence += HIJACK_CHURN_WEIGHT
            signals.append("address_churn")
        return HijackCheck(
            detected=confidence > HIJACK_CONFIDENCE_THRESHOLD,
            confidence=confidence,
            signals=signals,
        )

    # -- internal bookkeeping ----------------------------------------------

    def _remove(self, session_id: str) -> Optional[SessionMetadata]:
        session = self._sessions.pop(session_id)
        if session is not None:
            ids = self._user_index.get(session.user_id)
            if ids is not None:
                ids.discard(session_id)
                if not ids:
                    self._user_index.pop(session.user_id, None)
        return session

    def _is_dead(self, session: SessionMetadata, now: float) -> bool:
        return (
            session.age(now) > self.max_age_seconds
            or session.idle_for(now) > self.idle_timeout_seconds
        )

    def _live_user_sessions(self, user_id: str, now: float) -> List[SessionMetadata]:
        live: List[SessionMetadata] = []
        for session_id in list(self._user_index.get(user_id, ())):
            session = self._sessions.peek(session_id)
            if session is None:
                # Dropped by the cache (TTL or capacity); forget the index entry.
                self._user_index.get(user_id, set()).discard(session_id)
                continue
            if self._is_dead(session, now):
                self._remove(session_id)
                continue
            live.append(session)
        if user_id in self._user_index and not self._user_index[user_id]:
            self._user_index.pop(user_id, None)
        live.sort(key=lambda s: s.last_activity, reverse=True)
        return live

    # -- lifecycle -----------------------------------------------------------

    def create(
        self,
        user_id: str,
        context: RequestContext,
        *,
        mfa_verified: bool = False,
        location: Optional[GeoLocation] = None,
    ) -> SessionMetadata:
        now = self._clock()
        session = SessionMetadata(
            id=secrets.token_urlsafe(32),
            user_id=user_id,
            created_at=now,
            last_activity=now,
            ip_address=context.ip_address,
            device_signature=context.device_signature,
            created_ip_address=context.ip_address,
            created_device_signature=context.device_signature,
            is_secure=context.is_secure,
            mfa_verified=mfa_verified,
            location=location,
        )
        session.risk_score = self.session_risk(session, context, now)

        with self._lock:
            existing = self._live_user_sessions(user_id, now)
            keep = max(self.max_concurrent_sessions - 1, 0)
            evicted = existing[keep:]
            for old in evicted:
                self._remove(old.id)
            self._sessions.set(session.id, session)
            self._user_index.setdefault(user_id, set()).add(session.id)

        if evicted:
            logger.info(
                "sessions_evicted_concurrency_cap",
                user_id=user_id,
                evicted=len(evicted),
                cap=self.max_concurrent_sessions,
            )
            self.detector.record_activity(
                context.ip_address, SuspiciousActivity.CONCURRENT_SESSIONS_EXCEEDED
            )
        logger.info("session_created", user_id=user_id, risk_score=session.risk_score)
        return replace(session)

    def validate(self, session_id: str, context: RequestContext) -> SessionValidation:
        now = self._clock()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return SessionValidation(
                    valid=False,
                    reason="session not found",
                    error=AuthErrorCode.SESSION_NOT_FOUND,
                )

            if session.age(now) > self.max_age_seconds:
                self._remove(session_id)
                return SessionValidation(
                    valid=False,
                    reason="session expired",
                    error=AuthErrorCode.SESSION_EXPIRED,
                )

            if session.idle_for(now) > self.idle_timeout_seconds:
                self._remove(session_id)
                return SessionValidation(
                    valid=False,
                    reason="session timed out",
                    error=AuthErrorCode.SESSION_TIMED_OUT,
                )

            hijack = self.detect_hijacking(session, context)
            if hijack.detected:
                self._remove(session_id)
            else:
                session.last_activity = now
                session.ip_address = context.ip_address
                session.device_signature = context.device_signature
                session.risk_score = self.session_risk(session, context, now)
                self._sessions.set(session_id, session)
                snapshot = replace(session)

        if hijack.detected:
            self.detector.record_activity(
                context.ip_address, SuspiciousActivity.SESSION_HIJACK_ATTEMPT
            )
            logger.warning(
                "session_hijack_detected",
                user_id=session.user_id,
                ip_address=context.ip_address,
                confidence=hijack.confidence,
                signals=hijack.signals,
            )
            return SessionValidation(
                valid=False,
                reason="potential session hijacking detected",
                error=AuthErrorCode.HIJACK_SUSPECTED,
            )

        require_reauth = snapshot.risk_score > REAUTH_RISK_THRESHOLD or (
            snapshot.age(now) > self.renew_threshold_seconds and not snapshot.mfa_verified
        )
        return SessionValidation(valid=True, session=snapshot, require_reauth=require_reauth)

    def get(self, session_id: str) -> Optional[SessionMetadata]:
        with self._lock:
            session = self._sessions.peek(session_id)
            if session is None:
                return None
            if self._is_dead(session, self._clock()):
                self._remove(session_id)
                return None
            return replace(session)

    def mark_mfa_verified(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.peek(session_id)
            if session is None or self._is_dead(session, self._clock()):
                return False
            session.mfa_verified = True
            return True

    def terminate(self, session_id: str) -> bool:
        with self._lock:
            return self._remove(session_id) is not None

    def terminate_all(self, user_id: str) -> int:
        with self._lock:
            removed = 0
            for session_id in list(self._user_index.get(user_id, ())):
                if self._remove(session_id) is not None:
                    removed += 1
            self._user_index.pop(user_id, None)
        if removed:
            logger.info("user_sessions_terminated", user_id=user_id, count=removed)
        return removed

    def user_sessions(self, user_id: str) -> List[SessionMetadata]:
        """Live sessions for ``user_id``, most recently active first."""
        with self._lock:
            return [replace(s) for s in self._live_user_sessions(user_id, self._clock())]

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            purged = self._sessions.purge_expired()
            for session_id, session in self._sessions.items():
                if self._is_dead(session, now):
                    self._remove(session_id)
                    purged += 1
            for user_id in list(self._user_index):
                self._live_user_sessions(user_id, now)
        return purged

    def __len__(self) -> int:
        return len(self._sessions)
