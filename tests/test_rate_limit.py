"""Tests for login throttling, lockout and exponential backoff."""

from sessionguard.service.context import RequestContext
from sessionguard.service.rate_limit import backoff_delay
from sessionguard.storage.models import AuthErrorCode, SuspiciousActivity


def _fail(engine, context, clock, times, spacing=1.0):
    for _ in range(times):
        engine.record_auth_attempt(context, success=False, reason="bad password")
        clock.advance(spacing)


class TestBackoffDelay:
    def test_below_threshold_has_no_delay(self):
        assert backoff_delay(0) == 0
        assert backoff_delay(2) == 0

    def test_doubles_then_caps(self):
        assert backoff_delay(3) == 300
        assert backoff_delay(4) == 600
        assert backoff_delay(5) == 900
        assert backoff_delay(9) == 900


class TestIsAuthAllowed:
    def test_fresh_identity_is_allowed(self, engine, browser_context):
        decision = engine.is_auth_allowed(browser_context)

        assert decision.allowed is True
        assert decision.retry_after_seconds is None
        assert decision.error is None

    def test_ten_failures_lock_out_for_an_hour(self, engine, browser_context, clock):
        _fail(engine, browser_context, clock, 10)

        decision = engine.is_auth_allowed(browser_context)

        assert decision.allowed is False
        assert decision.reason == "too many failed attempts"
        assert decision.retry_after_seconds == 3600
        assert decision.error == AuthErrorCode.RATE_LIMITED

    def test_five_to_nine_failures_throttle_for_fifteen_minutes(
        self, engine, browser_context, clock
    ):
        for count in range(5, 10):
            context = RequestContext("198.51.100.%d" % count, browser_context.device_signature)
            _fail(engine, context, clock, count)

            decision = engine.is_auth_allowed(context)

            assert decision.allowed is False
            assert decision.reason == "multiple failed attempts"
            assert decision.retry_after_seconds == 900

    def test_three_failures_require_five_minute_backoff(self, engine, browser_context, clock):
        _fail(engine, browser_context, clock, 3, spacing=0)

        clock.advance(299)
        decision = engine.is_auth_allowed(browser_context)
        assert decision.allowed is False
        assert decision.reason == "rate limited"
        assert decision.retry_after_seconds == 1

        clock.advance(1)
        assert engine.is_auth_allowed(browser_context).allowed is True

    def test_four_failures_double_the_backoff(self, engine, browser_context, clock):
        _fail(engine, browser_context, clock, 4, spacing=0)

        decision = engine.is_auth_allowed(browser_context)
        assert decision.allowed is False
        assert decision.retry_after_seconds == 600

        clock.advance(600)
        assert engine.is_auth_allowed(browser_context).allowed is True

    def test_failures_outside_window_are_forgotten(self, engine, browser_context, clock):
        _fail(engine, browser_context, clock, 5, spacing=0)
        assert engine.is_auth_allowed(browser_context).allowed is False

        clock.advance(15 * 60 + 1)

        assert engine.is_auth_allowed(browser_context).allowed is True

    def test_successes_do_not_count_as_failures(self, engine, browser_context, clock):
        for _ in range(12):
            engine.record_auth_attempt(browser_context, success=True, user_id="u-1")
            clock.advance(1)

        assert engine.is_auth_allowed(browser_context).allowed is True

    def test_identity_keys_are_independent(self, engine, browser_context, clock):
        _fail(engine, browser_context, clock, 10)
        other = RequestContext("192.0.2.44", browser_context.device_signature)

        assert engine.is_auth_allowed(other).allowed is True

    def test_suspicious_address_is_blocked(self, engine, browser_context):
        for _ in range(3):
            engine.detector.record_activity(
                browser_context.ip_address, SuspiciousActivity.SESSION_HIJACK_ATTEMPT
            )

        decision = engine.is_auth_allowed(browser_context)

        assert engine.detector.score(browser_context.ip_address) == 90
        assert decision.allowed is False
        assert decision.reason == "address marked as suspicious"
        assert decision.retry_after_seconds == 3600

    def test_suspicion_at_threshold_is_not_blocked(self, engine, browser_context):
        engine.detector.record_activity(
            browser_context.ip_address, SuspiciousActivity.SESSION_HIJACK_ATTEMPT
        )
        engine.detector.record_activity(
            browser_context.ip_address, SuspiciousActivity.SESSION_HIJACK_ATTEMPT
        )
        engine.detector.record_activity(
            browser_context.ip_address, SuspiciousActivity.LOGIN_FROM_NEW_LOCATION
        )

        assert engine.detector.score(browser_context.ip_address) == 80
        assert engine.is_auth_allowed(browser_context).allowed is True
