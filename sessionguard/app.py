from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from sessionguard.api.error_handling import _error_response, register_exception_handlers
from sessionguard.api.routes import apply_csrf_cookie, health_router, router
from sessionguard.config import CSRFMode
from sessionguard.logging import get_logger, log_security_event, set_correlation_id
from sessionguard.service.csrf import CSRF_FAILURE_MESSAGE
from sessionguard.service.errors import CSRFValidationError
from sessionguard.service.runtime import get_runtime

logger = get_logger(__name__)

__version__ = "0.1.0"

_janitor_task: asyncio.Task | None = None


async def _run_janitor(interval_seconds: int) -> None:
    """Background loop purging expired attempts, suspicion records and sessions."""

    try:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await asyncio.to_thread(get_runtime().engine.purge_expired)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - best-effort cleanup
                logger.warning("janitor_purge_failed", error=str(exc))
    except asyncio.CancelledError:
        logger.info("janitor_task_cancelled")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the purge janitor on startup and cancel it on shutdown."""
    global _janitor_task
    runtime = get_runtime()
    interval = runtime.settings.janitor_interval_seconds
    if interval > 0:
        _janitor_task = asyncio.create_task(_run_janitor(interval))
        logger.info("janitor_started", interval_seconds=interval)

    yield

    if _janitor_task:
        _janitor_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _janitor_task
        _janitor_task = None


app = FastAPI(title="SessionGuard", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-CSRF-Token", "X-Session-ID", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def enforce_csrf_token(request: Request, call_next):
    """Apply the anti-forgery policy before any route runs.

    Signed mode reads the token from the header on state-changing requests
    and from the cookie on safe ones. Double-submit mode compares the cookie
    with the header. Safe requests without a usable token get a fresh cookie.
    """
    runtime = get_runtime()
    settings = runtime.settings
    engine = runtime.engine
    method = request.method
    path = request.url.path
    header_token = request.headers.get(settings.csrf_header_name)

    if settings.csrf_mode == CSRFMode.DOUBLE_SUBMIT:
        cookie_token = request.cookies.get(settings.csrf_double_submit_cookie_name)
        decision = engine.check_double_submit(method, path, cookie_token, header_token)
    else:
        cookie_token = request.cookies.get(settings.csrf_cookie_name)
        token = cookie_token if engine.csrf_guard.is_safe_method(method) else header_token
        decision = engine.check_csrf(method, path, token)

    if not decision.allowed:
        log_security_event(
            "csrf_rejected",
            method=method,
            path=path,
            mode=settings.csrf_mode.value,
        )
        exc = CSRFValidationError(decision.message or CSRF_FAILURE_MESSAGE)
        return _error_response(exc.status_code, exc.message, code=exc.error_code)

    response = await call_next(request)
    if decision.issue_token and not _sets_csrf_cookie(response, settings):
        if settings.csrf_mode == CSRFMode.DOUBLE_SUBMIT:
            fresh = engine.double_submit.generate()
        else:
            fresh = engine.generate_csrf_token()
        apply_csrf_cookie(response, fresh, settings)
    return response


def _sets_csrf_cookie(response, settings) -> bool:
    names = (settings.csrf_cookie_name, settings.csrf_double_submit_cookie_name)
    return any(
        header.split("=", 1)[0].strip() in names
        for header in response.headers.getlist("set-cookie")
    )


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if request.url.path.startswith("/v1/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    if request.url.scheme == "https":
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=63072000; includeSubDomains"
        )
    return response


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag every log line of the request with ``X-Request-ID`` (or a new UUID)."""
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


register_exception_handlers(app)
app.include_router(health_router)
app.include_router(router)


def create_app() -> FastAPI:
    return app
