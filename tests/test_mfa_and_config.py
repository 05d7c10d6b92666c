"""Tests for settings loading/validation and the MFA helper functions."""

import base64
import re

import pytest
from pydantic import ValidationError

from sessionguard.config import (
    DEFAULT_AUTOMATED_CLIENT_PATTERNS,
    CSRFMode,
    Environment,
    Settings,
    get_settings,
    reset_settings_cache,
)
from sessionguard.service.mfa import (
    RejectingMFAVerifier,
    generate_backup_codes,
    generate_totp_secret,
)

STRONG_SECRET = "s" * 40


class TestSettingsDefaults:
    def test_defaults(self):
        settings = Settings(test_mode=True)

        assert settings.session_max_age_seconds == 86400
        assert settings.session_idle_timeout_seconds == 1800
        assert settings.session_renew_threshold_seconds == 3600
        assert settings.max_concurrent_sessions == 5
        assert settings.csrf_cookie_name == "_csrf_token"
        assert settings.csrf_header_name == "x-csrf-token"
        assert settings.csrf_double_submit_cookie_name == "_csrf_double_submit"
        assert settings.csrf_mode == CSRFMode.SIGNED
        assert settings.automated_client_patterns == DEFAULT_AUTOMATED_CLIENT_PATTERNS

    def test_generates_secret_in_test_mode(self):
        settings = Settings(test_mode=True)

        assert settings.csrf_secret
        assert len(settings.csrf_secret) >= 32


class TestSettingsValidation:
    def test_production_requires_secret(self):
        with pytest.raises(ValidationError):
            Settings(environment=Environment.PRODUCTION)

    def test_production_rejects_short_secret(self):
        with pytest.raises(ValidationError):
            Settings(environment=Environment.PRODUCTION, csrf_secret="short")

    def test_production_accepts_strong_secret(self):
        settings = Settings(environment=Environment.PRODUCTION, csrf_secret=STRONG_SECRET)

        assert settings.csrf_secret == STRONG_SECRET

    @pytest.mark.parametrize(
        "field", ["session_max_age_seconds", "max_concurrent_sessions", "csrf_max_age_seconds"]
    )
    def test_rejects_non_positive(self, field):
        with pytest.raises(ValidationError):
            Settings(test_mode=True, **{field: 0})

    def test_rejects_invalid_hour(self):
        with pytest.raises(ValidationError):
            Settings(test_mode=True, business_hours_end=24)


class TestFromEnv:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("MAX_CONCURRENT_SESSIONS", "3")
        monkeypatch.setenv("CSRF_MODE", "double_submit")
        monkeypatch.setenv("CSRF_EXEMPT_ROUTES", "/healthz, /v1/hooks ,")
        monkeypatch.setenv("AUTOMATED_CLIENT_PATTERNS", "bot,curl")

        settings = Settings.from_env()

        assert settings.max_concurrent_sessions == 3
        assert settings.csrf_mode == CSRFMode.DOUBLE_SUBMIT
        assert settings.csrf_exempt_routes == ["/healthz", "/v1/hooks"]
        assert settings.automated_client_patterns == ["bot", "curl"]

    def test_get_settings_is_cached_until_reset(self, monkeypatch):
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv("MAX_CONCURRENT_SESSIONS", "2")
        reset_settings_cache()

        assert get_settings().max_concurrent_sessions == 2


class TestMFAHelpers:
    def test_totp_secret_is_base32(self):
        secret = generate_totp_secret()

        padded = secret + "=" * (-len(secret) % 8)
        assert len(base64.b32decode(padded)) == 20

    def test_backup_codes_format(self):
        codes = generate_backup_codes()

        assert len(codes) == 10
        assert len(set(codes)) == 10
        assert all(re.fullmatch(r"[0-9A-F]{2}(-[0-9A-F]{2}){5}", c) for c in codes)

    def test_rejecting_verifier(self):
        assert RejectingMFAVerifier().verify("SECRET", "123456") is False
