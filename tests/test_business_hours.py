"""
Tests for SLACalculator and BusinessHoursSchedule.
"""

from datetime import datetime, timedelta, timezone

import pytest

from slaflow.config import TimerType
from slaflow.sla.domain import (
    SLATimer, SLACalculator, BusinessHoursSchedule,
    is_within_business_hours, should_pause_off_hours
)

from conftest import START, make_policy


def _at(hour: int, minute: int = 0, day: int = 14) -> datetime:
    # January 2026: the 14th is a Wednesday, the 17th a Saturday
    return datetime(2026, 1, day, hour, minute, tzinfo=timezone.utc)


class TestSLACalculator:
    """Tests for elapsed/percentage arithmetic."""

    def _timer(self, **overrides) -> SLATimer:
        values = dict(
            id="t", conversation_id="T1", policy_id=None,
            timer_type=TimerType.RESPONSE, target_time=240, started_at=START,
        )
        values.update(overrides)
        return SLATimer(**values)

    def test_elapsed_is_floored_to_minutes(self):
        timer = self._timer()

        elapsed, percentage = SLACalculator.evaluate(timer, START + timedelta(minutes=59, seconds=59))

        assert elapsed == 59
        assert percentage == pytest.approx(59 / 240 * 100)

    def test_paused_minutes_are_subtracted(self):
        timer = self._timer(total_paused_time=30)

        elapsed, _ = SLACalculator.evaluate(timer, START + timedelta(minutes=100))

        assert elapsed == 70

    def test_elapsed_never_negative(self):
        timer = self._timer(total_paused_time=500)

        elapsed, _ = SLACalculator.evaluate(timer, START + timedelta(minutes=10))

        assert elapsed == 0

    def test_percentage_unbounded_above(self):
        timer = self._timer(target_time=100)

        _, percentage = SLACalculator.evaluate(timer, START + timedelta(minutes=150))

        assert percentage == 150

    def test_format_minutes(self):
        assert SLACalculator.format_minutes(125) == "2h 5m"
        assert SLACalculator.format_minutes(0) == "0h 0m"


class TestBusinessHoursSchedule:
    """Tests for the weekly schedule."""

    @pytest.fixture
    def schedule(self) -> BusinessHoursSchedule:
        return BusinessHoursSchedule.from_config(
            {
                "Wednesday": {"start": "09:00", "end": "18:00"},
                "saturday": "10:00-14:00",
                "sunday": "closed",
            },
            timezone="UTC",
            holidays=["2026-12-25"],
        )

    def test_open_within_window(self, schedule):
        assert schedule.is_open(_at(9, 0)) is True
        assert schedule.is_open(_at(18, 0)) is True

    def test_closed_outside_window(self, schedule):
        assert schedule.is_open(_at(8, 59)) is False
        assert schedule.is_open(_at(18, 1)) is False

    def test_string_window(self, schedule):
        assert schedule.is_open(_at(11, 0, day=17)) is True
        assert schedule.is_open(_at(15, 0, day=17)) is False

    def test_missing_and_closed_days(self, schedule):
        assert schedule.is_open(_at(12, 0, day=15)) is False  # Thursday
        assert schedule.is_open(_at(12, 0, day=18)) is False  # Sunday

    def test_holiday_closed(self):
        schedule = BusinessHoursSchedule.from_config(
            {"wednesday": "09:00-18:00"}, holidays=["2026-01-14"]
        )

        assert schedule.is_open(_at(12, 0)) is False

    def test_timezone_conversion(self):
        """Windows are local to the schedule timezone."""
        schedule = BusinessHoursSchedule.from_config(
            {"wednesday": "09:00-18:00"}, timezone="America/New_York"
        )

        # 13:00 UTC is 08:00 in New York (EST)
        assert schedule.is_open(_at(13, 0)) is False
        assert schedule.is_open(_at(15, 0)) is True

    def test_unknown_timezone_falls_back_to_utc(self):
        schedule = BusinessHoursSchedule.from_config(
            {"wednesday": "09:00-18:00"}, timezone="Mars/Olympus"
        )

        assert schedule.is_open(_at(10, 0)) is True

    def test_empty_schedule_is_always_open(self):
        assert BusinessHoursSchedule.from_config({}).is_open(_at(3, 0)) is True


class TestPolicyBusinessHours:
    """Tests for policy-level helpers."""

    def test_policy_without_business_hours_is_always_open(self):
        policy = make_policy(business_hours={"monday": "09:00-10:00"})

        assert is_within_business_hours(policy, _at(23, 0)) is True
        assert should_pause_off_hours(policy, _at(23, 0)) is False

    def test_pause_off_hours_requires_flag(self):
        hours = {"wednesday": "09:00-18:00"}
        no_pause = make_policy(use_business_hours=True, business_hours=hours)
        pause = make_policy(use_business_hours=True, pause_off_hours=True, business_hours=hours)

        assert should_pause_off_hours(no_pause, _at(20, 0)) is False
        assert should_pause_off_hours(pause, _at(20, 0)) is True
        assert should_pause_off_hours(pause, _at(12, 0)) is False
