from __future__ import annotations

import os
import secrets
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    IPvAnyNetwork,
    field_validator,
    model_validator,
)

from sessionguard.logging import get_logger

logger = get_logger(__name__)

# Minimum length accepted for the CSRF signing secret outside test/dev runs.
MIN_SECRET_LENGTH = 32

DEFAULT_AUTOMATED_CLIENT_PATTERNS = [
    "bot",
    "crawler",
    "spider",
    "scraper",
    "curl",
    "wget",
    "python",
    "requests",
    "node",
    "axios",
    "headless",
]


class Environment(str, Enum):
    """Deployment environments; only production refuses a generated secret."""

    DEVELOPMENT = "development"
    TEST = "test"
    STAGING = "staging"
    PRODUCTION = "production"


class CSRFMode(str, Enum):
    """Which anti-forgery design the HTTP middleware enforces."""

    SIGNED = "signed"
    DOUBLE_SUBMIT = "double_submit"


class SameSite(str, Enum):
    STRICT = "strict"
    LAX = "lax"
    NONE = "none"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class Settings(BaseModel):
    """Runtime settings for the session security engine."""

    environment: Environment = env_field(Environment.DEVELOPMENT, "SESSIONGUARD_ENV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors (generated secrets allowed).",
    )

    # Session lifecycle
    session_max_age_seconds: int = env_field(
        24 * 60 * 60,
        "SESSION_MAX_AGE_SECONDS",
        description="Absolute session lifetime measured from creation",
    )
    session_renew_threshold_seconds: int = env_field(
        60 * 60,
        "SESSION_RENEW_THRESHOLD_SECONDS",
        description="Session age after which unverified (non-MFA) sessions must re-authenticate",
    )
    session_idle_timeout_seconds: int = env_field(
        30 * 60, "SESSION_IDLE_TIMEOUT_SECONDS", description="Idle timeout"
    )
    max_concurrent_sessions: int = env_field(5, "MAX_CONCURRENT_SESSIONS")
    session_cache_size: int = env_field(50_000, "SESSION_CACHE_SIZE")
    session_cookie_name: str = env_field("session_id", "SESSION_COOKIE_NAME")
    require_https: bool = env_field(False, "REQUIRE_HTTPS")
    cookie_samesite: SameSite = env_field(SameSite.LAX, "COOKIE_SAMESITE")

    # Attempt ledger
    attempt_retention: int = env_field(20, "ATTEMPT_RETENTION")
    attempt_window_seconds: int = env_field(60 * 60, "ATTEMPT_WINDOW_SECONDS")
    attempt_cache_size: int = env_field(10_000, "ATTEMPT_CACHE_SIZE")

    # Suspicion map
    suspicion_ttl_seconds: int = env_field(24 * 60 * 60, "SUSPICION_TTL_SECONDS")
    suspicion_cache_size: int = env_field(10_000, "SUSPICION_CACHE_SIZE")

    # Risk scoring
    business_hours_start: int = env_field(6, "BUSINESS_HOURS_START")
    business_hours_end: int = env_field(22, "BUSINESS_HOURS_END")
    automated_client_patterns: list[str] = env_field(
        list(DEFAULT_AUTOMATED_CLIENT_PATTERNS),
        "AUTOMATED_CLIENT_PATTERNS",
        description="Comma-separated substrings marking scripted/headless clients",
    )

    # CSRF
    csrf_mode: CSRFMode = env_field(CSRFMode.SIGNED, "CSRF_MODE")
    csrf_secret: str | None = env_field(None, "CSRF_SECRET")
    csrf_max_age_seconds: int = env_field(24 * 60 * 60, "CSRF_MAX_AGE_SECONDS")
    csrf_token_bytes: int = env_field(32, "CSRF_TOKEN_BYTES")
    csrf_cookie_name: str = env_field("_csrf_token", "CSRF_COOKIE_NAME")
    csrf_header_name: str = env_field("x-csrf-token", "CSRF_HEADER_NAME")
    csrf_double_submit_cookie_name: str = env_field(
        "_csrf_double_submit", "CSRF_DOUBLE_SUBMIT_COOKIE_NAME"
    )
    csrf_exempt_routes: list[str] = env_field(
        ["/healthz", "/v1/webhooks"],
        "CSRF_EXEMPT_ROUTES",
        description="Comma-separated path prefixes that skip CSRF validation",
    )

    # Client address extraction; forwarding headers are ignored unless the
    # socket peer falls inside one of these networks
    trusted_proxies: list[IPvAnyNetwork] = env_field(
        [],
        "TRUSTED_PROXIES",
        description="Comma-separated proxy addresses or CIDR ranges",
    )

    # Optional janitor; 0 disables the background purge task
    janitor_interval_seconds: int = env_field(300, "JANITOR_INTERVAL_SECONDS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator(
        "automated_client_patterns",
        "csrf_exempt_routes",
        "trusted_proxies",
        mode="before",
    )
    @classmethod
    def _parse_csv(cls, value: Any) -> Any:
        return _split_csv(value)

    @field_validator(
        "session_max_age_seconds",
        "session_renew_threshold_seconds",
        "session_idle_timeout_seconds",
        "max_concurrent_sessions",
        "session_cache_size",
        "attempt_retention",
        "attempt_window_seconds",
        "attempt_cache_size",
        "suspicion_ttl_seconds",
        "suspicion_cache_size",
        "csrf_max_age_seconds",
        "csrf_token_bytes",
    )
    @classmethod
    def _ensure_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("business_hours_start", "business_hours_end")
    @classmethod
    def _ensure_hour(cls, value: int) -> int:
        if not 0 <= value <= 23:
            raise ValueError("hour must be between 0 and 23")
        return value

    @field_validator("janitor_interval_seconds")
    @classmethod
    def _ensure_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @model_validator(mode="after")
    def _ensure_csrf_secret(self) -> "Settings":
        relaxed = self.test_mode or self.environment in {
            Environment.DEVELOPMENT,
            Environment.TEST,
        }
        if self.csrf_secret:
            if len(self.csrf_secret) < MIN_SECRET_LENGTH and not relaxed:
                raise ValueError(
                    f"CSRF_SECRET must be at least {MIN_SECRET_LENGTH} characters"
                )
            return self
        if not relaxed:
            raise ValueError(
                "CSRF_SECRET is required outside development/test environments"
            )
        # Per-process secret: tokens do not survive a restart, which is fine for dev
        self.csrf_secret = secrets.token_urlsafe(48)
        logger.warning(
            "csrf_secret_generated",
            environment=self.environment.value,
            message="CSRF_SECRET not set; generated an ephemeral signing secret",
        )
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
