"""Tests for additive request risk scoring and advisory recommendations."""

from datetime import datetime

import pytest
from conftest import BROWSER_UA, FakeClock

from sessionguard.service.context import RequestContext
from sessionguard.service.engine import SecurityEngine
from sessionguard.service.risk import (
    FACTOR_AUTOMATED_CLIENT,
    FACTOR_RAPID_REQUESTS,
    FACTOR_SESSION_CAP,
    FACTOR_SUSPICIOUS_ADDRESS,
    FACTOR_UNUSUAL_LOCATION,
    FACTOR_UNUSUAL_TIME,
    recommendations_for,
)
from sessionguard.storage.models import SuspiciousActivity

SCRIPT_UA = "python-requests/2.31.0"


class AlwaysAnomalousGeo:
    def is_anomalous(self, user_id, ip_address, known_location):
        return True


class AlwaysRapid:
    def is_rapid(self, ip_address):
        return True


def _engine_at(settings, hour, minute=0, **kwargs):
    clock = FakeClock(datetime(2024, 3, 5, hour, minute).timestamp())
    return SecurityEngine.from_settings(settings, clock=clock, **kwargs)


class TestAssess:
    def test_clean_browser_request(self, engine, browser_context):
        assessment = engine.assess_risk(browser_context)

        assert assessment.score == 0
        assert assessment.factors == []
        assert assessment.recommendations == []
        assert not (assessment.require_mfa or assessment.require_reauth or assessment.block_access)

    def test_automated_client(self, engine):
        assessment = engine.assess_risk(RequestContext("203.0.113.5", SCRIPT_UA))

        assert assessment.score == 30
        assert assessment.factors == [FACTOR_AUTOMATED_CLIENT]
        assert assessment.require_mfa is False
        assert assessment.recommendations == ["Use a standard web browser for better security"]

    def test_suspicion_contribution_is_capped(self, engine):
        context = RequestContext("203.0.113.5", SCRIPT_UA)
        for _ in range(2):
            engine.detector.record_activity(
                context.ip_address, SuspiciousActivity.SESSION_HIJACK_ATTEMPT
            )

        assessment = engine.assess_risk(context)

        assert assessment.score == 60
        assert assessment.factors == [FACTOR_SUSPICIOUS_ADDRESS, FACTOR_AUTOMATED_CLIENT]
        assert assessment.require_mfa is True
        assert assessment.require_reauth is False
        assert "Change password if not done recently" in assessment.recommendations
        assert "Consider accessing from a trusted network" in assessment.recommendations

    def test_session_cap_factor(self, engine, browser_context):
        for _ in range(5):
            engine.create_session("user-1", browser_context)

        assessment = engine.assess_risk(browser_context, user_id="user-1")

        assert FACTOR_SESSION_CAP in assessment.factors
        assert assessment.score == 20

    def test_session_cap_ignored_without_user(self, engine, browser_context):
        for _ in range(5):
            engine.create_session("user-1", browser_context)

        assert engine.assess_risk(browser_context).score == 0

    def test_everything_at_once_is_capped_and_blocked(self, settings):
        engine = _engine_at(settings, 3, geo=AlwaysAnomalousGeo(), request_rate=AlwaysRapid())
        context = RequestContext("203.0.113.5", SCRIPT_UA)
        engine.detector.record_activity(context.ip_address, SuspiciousActivity.RAPID_REQUESTS)
        for _ in range(5):
            engine.create_session("user-1", context)

        assessment = engine.assess_risk(context, user_id="user-1")

        assert assessment.score == 100
        assert set(assessment.factors) == {
            FACTOR_SUSPICIOUS_ADDRESS,
            FACTOR_UNUSUAL_TIME,
            FACTOR_SESSION_CAP,
            FACTOR_UNUSUAL_LOCATION,
            FACTOR_AUTOMATED_CLIENT,
            FACTOR_RAPID_REQUESTS,
        }
        assert assessment.block_access is True
        assert assessment.recommendations[:2] == [
            "Enable two-factor authentication immediately",
            "Review account for suspicious activity",
        ]

    def test_pure_function_of_state(self, engine, browser_context):
        first = engine.assess_risk(browser_context)
        second = engine.assess_risk(browser_context)

        assert first == second
        assert engine.detector.get(browser_context.ip_address) is None


class TestBusinessHours:
    @pytest.mark.parametrize(
        "hour,minute,outside",
        [
            (3, 0, True),
            (5, 59, True),
            (6, 0, False),
            (12, 0, False),
            (22, 30, False),
            (23, 0, True),
        ],
    )
    def test_boundaries(self, settings, hour, minute, outside):
        engine = _engine_at(settings, hour, minute)

        assessment = engine.assess_risk(RequestContext("203.0.113.5", BROWSER_UA))

        assert (FACTOR_UNUSUAL_TIME in assessment.factors) is outside


class TestRecommendations:
    def test_thresholds(self):
        assert recommendations_for(50, []) == []
        assert recommendations_for(51, []) == [
            "Change password if not done recently",
            "Review active sessions and terminate unknown ones",
        ]
        assert len(recommendations_for(71, [])) == 4

    def test_factor_advice_is_not_duplicated(self):
        recommendations = recommendations_for(60, [FACTOR_SESSION_CAP])

        assert recommendations.count("Review active sessions and terminate unknown ones") == 1
