from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Header, Path, Query, Request, Response

from sessionguard.api.schemas import (
    AuthAttemptRequest,
    AuthDecisionResponse,
    CreateSessionRequest,
    CSRFTokenResponse,
    Envelope,
    HealthResponse,
    MFAVerifyRequest,
    RiskResponse,
    SessionListResponse,
    SessionResponse,
    SessionValidationResponse,
    TerminateResponse,
)
from sessionguard.config import CSRFMode, Settings
from sessionguard.logging import get_logger, log_security_event
from sessionguard.service.context import RequestContext, context_from_headers
from sessionguard.service.errors import (
    AuthenticationError,
    RateLimitedError,
    SessionInvalidError,
)
from sessionguard.service.runtime import get_runtime
from sessionguard.storage.models import (
    AuthDecision,
    AuthErrorCode,
    GeoLocation,
    SessionMetadata,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")
health_router = APIRouter()


def request_context(request: Request, settings: Settings) -> RequestContext:
    return context_from_headers(
        request.headers,
        request.client.host if request.client else None,
        scheme=request.url.scheme,
        trusted_proxies=settings.trusted_proxies,
    )


def _session_id_from_request(request: Request, header_session: Optional[str]) -> Optional[str]:
    settings = get_runtime().settings
    return header_session or request.cookies.get(settings.session_cookie_name)


def _apply_session_cookie(response: Response, session: SessionMetadata, settings: Settings) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        session.id,
        httponly=True,
        secure=settings.require_https or session.is_secure,
        samesite=settings.cookie_samesite.value,
        max_age=settings.session_max_age_seconds,
        path="/",
    )


def apply_csrf_cookie(response: Response, token: str, settings: Settings) -> None:
    """Set the anti-forgery cookie; it must stay readable by client scripts."""
    if settings.csrf_mode == CSRFMode.DOUBLE_SUBMIT:
        name, samesite = settings.csrf_double_submit_cookie_name, "strict"
    else:
        name, samesite = settings.csrf_cookie_name, settings.cookie_samesite.value
    response.set_cookie(
        name,
        token,
        httponly=False,
        secure=settings.require_https,
        samesite=samesite,
        max_age=settings.csrf_max_age_seconds,
        path="/",
    )


def _raise_if_denied(decision: AuthDecision, context: RequestContext) -> None:
    if decision.allowed:
        return
    log_security_event(
        "auth_rate_limited",
        ip_address=context.ip_address,
        reason=decision.reason,
        retry_after_seconds=decision.retry_after_seconds,
    )
    raise RateLimitedError(
        decision.reason or "rate limited",
        retry_after=decision.retry_after_seconds,
        detail={"retry_after_seconds": decision.retry_after_seconds},
    )


@health_router.get("/healthz", response_model=HealthResponse, tags=["health"])
async def healthz():
    runtime = get_runtime()
    return HealthResponse(status="ok", sessions=len(runtime.engine.sessions))


@router.post("/auth/attempts", response_model=Envelope, tags=["auth"])
async def record_attempt(body: AuthAttemptRequest, request: Request):
    """Record the outcome of a credential check performed by the caller.

    Returns the gate decision for the next attempt from this identity.
    """
    runtime = get_runtime()
    context = request_context(request, runtime.settings)
    runtime.engine.record_auth_attempt(
        context, body.success, user_id=body.user_id, reason=body.reason
    )
    decision = runtime.engine.is_auth_allowed(context)
    return Envelope(status="ok", data=AuthDecisionResponse.from_decision(decision))


@router.get("/auth/allowed", response_model=Envelope, tags=["auth"])
async def auth_allowed(request: Request):
    """Gate a login attempt before credentials are checked.

    Raises:
        429: With ``Retry-After`` when the identity is throttled or locked out
    """
    runtime = get_runtime()
    context = request_context(request, runtime.settings)
    decision = runtime.engine.is_auth_allowed(context)
    _raise_if_denied(decision, context)
    return Envelope(status="ok", data=AuthDecisionResponse.from_decision(decision))


@router.post("/sessions", response_model=Envelope, status_code=201, tags=["sessions"])
async def create_session(body: CreateSessionRequest, request: Request, response: Response):
    runtime = get_runtime()
    context = request_context(request, runtime.settings)
    location = (
        GeoLocation(
            country=body.location.country,
            city=body.location.city,
            coordinates=body.location.coordinates,
        )
        if body.location
        else None
    )
    session = runtime.engine.create_session(
        body.user_id, context, mfa_verified=body.mfa_verified, location=location
    )
    _apply_session_cookie(response, session, runtime.settings)
    return Envelope(status="ok", data=SessionResponse.from_session(session))


@router.get("/sessions/current", response_model=Envelope, tags=["sessions"])
async def current_session(
    request: Request,
    x_session_id: Optional[str] = Header(None, alias="X-Session-ID"),
):
    """Validate the caller's session and refresh its activity.

    Raises:
        401: session_not_found, session_expired, session_timed_out or hijack_suspected
    """
    runtime = get_runtime()
    context = request_context(request, runtime.settings)
    session_id = _session_id_from_request(request, x_session_id)
    if not session_id:
        raise SessionInvalidError(
            "session not found", error_code=AuthErrorCode.SESSION_NOT_FOUND.value
        )
    result = runtime.engine.validate_session(session_id, context)
    if not result.valid:
        if result.error == AuthErrorCode.HIJACK_SUSPECTED:
            log_security_event(
                "session_hijack_suspected",
                ip_address=context.ip_address,
                device_signature=context.device_signature,
            )
        raise SessionInvalidError(
            result.reason or "invalid session",
            error_code=(result.error or AuthErrorCode.SESSION_NOT_FOUND).value,
        )
    return Envelope(status="ok", data=SessionValidationResponse.from_validation(result))


@router.delete("/sessions/{session_id}", response_model=Envelope, tags=["sessions"])
async def terminate_session(
    session_id: str = Path(..., min_length=1, max_length=256),
):
    runtime = get_runtime()
    removed = runtime.engine.terminate_session(session_id)
    return Envelope(status="ok", data=TerminateResponse(terminated=1 if removed else 0))


@router.post("/sessions/{session_id}/mfa", response_model=Envelope, tags=["sessions"])
async def verify_session_mfa(
    body: MFAVerifyRequest,
    session_id: str = Path(..., min_length=1, max_length=256),
):
    """Mark a session MFA-verified once the external verifier accepts the code.

    Raises:
        401: If the code is rejected or the session is gone
    """
    runtime = get_runtime()
    if not runtime.engine.verify_mfa(session_id, body.secret, body.code):
        raise AuthenticationError("mfa verification failed")
    session = runtime.engine.sessions.get(session_id)
    if session is None:
        raise SessionInvalidError(
            "session not found", error_code=AuthErrorCode.SESSION_NOT_FOUND.value
        )
    return Envelope(status="ok", data=SessionResponse.from_session(session))


@router.get("/users/{user_id}/sessions", response_model=Envelope, tags=["sessions"])
async def list_user_sessions(user_id: str = Path(..., min_length=1, max_length=256)):
    runtime = get_runtime()
    sessions = runtime.engine.get_user_sessions(user_id)
    return Envelope(
        status="ok",
        data=SessionListResponse(items=[SessionResponse.from_session(s) for s in sessions]),
    )


@router.delete("/users/{user_id}/sessions", response_model=Envelope, tags=["sessions"])
async def terminate_user_sessions(user_id: str = Path(..., min_length=1, max_length=256)):
    runtime = get_runtime()
    count = runtime.engine.terminate_all_sessions(user_id)
    return Envelope(status="ok", data=TerminateResponse(terminated=count))


@router.get("/risk", response_model=Envelope, tags=["risk"])
async def assess_risk(
    request: Request,
    user_id: Optional[str] = Query(None, max_length=256),
):
    runtime = get_runtime()
    context = request_context(request, runtime.settings)
    assessment = runtime.engine.assess_risk(context, user_id)
    return Envelope(status="ok", data=RiskResponse.from_assessment(assessment))


@router.get("/csrf", response_model=Envelope, tags=["csrf"])
async def issue_csrf_token(response: Response):
    """Issue a fresh anti-forgery token and matching cookie."""
    runtime = get_runtime()
    settings = runtime.settings
    if settings.csrf_mode == CSRFMode.DOUBLE_SUBMIT:
        token = runtime.engine.double_submit.generate()
    else:
        token = runtime.engine.generate_csrf_token()
    apply_csrf_cookie(response, token, settings)
    return Envelope(
        status="ok",
        data=CSRFTokenResponse(token=token, header_name=settings.csrf_header_name),
    )
