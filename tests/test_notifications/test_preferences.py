"""Tests for the preference filter and quiet-hours arithmetic."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from src.assignments.schemas import Severity
from src.notifications.config import NotificationConfig
from src.notifications.preferences import (
    PreferenceFilter,
    PreferenceRepository,
    current_minute_of_day,
    in_quiet_hours,
)
from src.notifications.schemas import NotificationPreference, NotificationRecord


def _record(severity=Severity.HIGH, type="CASE_CREATED"):
    return NotificationRecord(
        recipient_id=5,
        rule_id="R1",
        external_event_id="e1",
        severity=severity,
        type=type,
        title="Alert",
    )


def _at(hour, minute=0):
    return datetime(2026, 3, 10, hour, minute, tzinfo=timezone.utc)


NIGHT = NotificationPreference(
    user_id=5,
    severity_threshold="LOW",
    quiet_hours_start="22:00",
    quiet_hours_end="06:00",
)


class TestInQuietHours:
    def test_same_day_window(self):
        assert in_quiet_hours(9 * 60, 17 * 60, 12 * 60)
        assert not in_quiet_hours(9 * 60, 17 * 60, 17 * 60)
        assert in_quiet_hours(9 * 60, 17 * 60, 9 * 60)

    def test_window_wraps_midnight(self):
        start, end = 22 * 60, 6 * 60
        assert in_quiet_hours(start, end, 23 * 60 + 30)
        assert in_quiet_hours(start, end, 3 * 60)
        assert not in_quiet_hours(start, end, 12 * 60)
        assert not in_quiet_hours(start, end, 6 * 60)

    def test_equal_bounds_cover_whole_day(self):
        assert in_quiet_hours(600, 600, 0)
        assert in_quiet_hours(600, 600, 1439)


class TestPreferenceFilter:
    @pytest.mark.parametrize("hour,minute", [(23, 30), (3, 0)])
    def test_suppressed_inside_quiet_window(self, hour, minute):
        decision = PreferenceFilter().evaluate(NIGHT, _record(), now=_at(hour, minute))
        assert not decision
        assert decision.reason == "quiet_hours"

    def test_delivered_outside_quiet_window(self):
        assert PreferenceFilter().should_deliver(NIGHT, _record(), now=_at(12))

    @pytest.mark.parametrize("hour,minute", [(23, 30), (3, 0), (12, 0)])
    def test_critical_always_delivered(self, hour, minute):
        assert PreferenceFilter().should_deliver(NIGHT, _record(Severity.CRITICAL), now=_at(hour, minute))

    def test_high_does_not_bypass_quiet_hours(self):
        assert not PreferenceFilter().should_deliver(NIGHT, _record(Severity.HIGH), now=_at(23, 30))

    def test_severity_threshold(self):
        pref = NotificationPreference(user_id=5, severity_threshold="HIGH")
        decision = PreferenceFilter().evaluate(pref, _record(Severity.MEDIUM))
        assert decision.reason == "severity"
        assert PreferenceFilter().should_deliver(pref, _record(Severity.HIGH))

    def test_type_allow_list(self):
        pref = NotificationPreference(user_id=5, enabled_types=frozenset({"SLA_BREACH"}))
        decision = PreferenceFilter().evaluate(pref, _record(type="CASE_CREATED"))
        assert decision.reason == "type"
        assert PreferenceFilter().should_deliver(pref, _record(type="SLA_BREACH"))

    def test_type_checked_before_severity(self):
        pref = NotificationPreference(
            user_id=5, severity_threshold="CRITICAL", enabled_types=frozenset({"SLA_BREACH"}),
        )
        assert PreferenceFilter().evaluate(pref, _record(Severity.LOW)).reason == "type"

    def test_quiet_hours_in_user_timezone(self):
        pref = NotificationPreference(
            user_id=5,
            severity_threshold="LOW",
            quiet_hours_start="22:00",
            quiet_hours_end="06:00",
            timezone="Asia/Tokyo",
        )
        # 14:00 UTC is 23:00 in Tokyo
        assert not PreferenceFilter().should_deliver(pref, _record(), now=_at(14))
        assert PreferenceFilter().should_deliver(pref, _record(), now=_at(4))

    def test_uses_injected_clock(self):
        flt = PreferenceFilter(clock=lambda: _at(23, 30))
        assert not flt.should_deliver(NIGHT, _record())

    def test_no_quiet_hours_always_delivers(self):
        pref = NotificationPreference(user_id=5, severity_threshold="LOW")
        assert PreferenceFilter().should_deliver(pref, _record(Severity.LOW), now=_at(3))


class TestCurrentMinuteOfDay:
    def test_unknown_timezone_falls_back_to_utc(self):
        pref = NotificationPreference(user_id=5, timezone="Mars/Olympus")
        assert current_minute_of_day(pref, _at(10, 15)) == 615

    def test_naive_datetime_is_utc(self):
        pref = NotificationPreference(user_id=5)
        assert current_minute_of_day(pref, datetime(2026, 3, 10, 1, 2)) == 62


class TestPreferenceRepository:
    @pytest.mark.asyncio
    async def test_missing_row_returns_configured_default(self):
        db = AsyncMock()
        db.fetchrow.return_value = None
        config = NotificationConfig(default_severity_threshold="HIGH", default_timezone="Europe/Paris")

        pref = await PreferenceRepository(db, config).get(5)

        assert pref.severity_threshold is Severity.HIGH
        assert pref.timezone == "Europe/Paris"
        assert not pref.has_quiet_hours

    @pytest.mark.asyncio
    async def test_get_many_fills_gaps_with_defaults(self):
        db = AsyncMock()
        db.fetch.return_value = [{
            "user_id": 5,
            "severity_threshold": "CRITICAL",
            "enabled_types": ["SLA_BREACH"],
            "quiet_hours_start": 1320,
            "quiet_hours_end": 360,
            "timezone": "UTC",
            "in_app": True,
            "desktop": False,
            "email": True,
        }]

        prefs = await PreferenceRepository(db).get_many([7, 5])

        assert set(prefs) == {5, 7}
        assert prefs[5].severity_threshold is Severity.CRITICAL
        assert prefs[5].quiet_hours_start == 1320
        assert prefs[5].email is True
        assert prefs[7].severity_threshold is Severity.MEDIUM
