"""
SLA Value Objects
==================

Immutable value objects and stateless calculators for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from slaflow.config import TimerStatus
from slaflow.sla.domain.entities import SLAPolicy, SLATimer
from slaflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

WEEKDAYS = (
    "monday", "tuesday", "wednesday", "thursday",
    "friday", "saturday", "sunday"
)


class SLACalculator:
    """
    Pure functions for SLA timer calculations.

    Stateless utility class - all elapsed/percentage logic in one place.
    Durations are whole minutes, floored.
    """

    @staticmethod
    def minutes_between(start: datetime, end: datetime) -> int:
        """Whole minutes from start to end (floored, may be negative)."""
        return int((end - start).total_seconds() // 60)

    @staticmethod
    def elapsed_minutes(timer: SLATimer, now: datetime) -> int:
        """
        Elapsed working minutes of a timer.

        elapsed = floor((now - started_at) / 1 min) - total_paused_time

        For a paused timer the still-open pause interval is excluded too.
        Never negative.
        """
        elapsed = SLACalculator.minutes_between(timer.started_at, now)
        if timer.status == TimerStatus.PAUSED and timer.paused_at is not None:
            elapsed -= SLACalculator.minutes_between(timer.paused_at, now)
        elapsed -= timer.total_paused_time or 0
        return max(0, elapsed)

    @staticmethod
    def percentage_elapsed(elapsed_minutes: int, target_minutes: int) -> float:
        """Percentage of the target consumed (unbounded above)."""
        if target_minutes <= 0:
            return 100.0
        return elapsed_minutes / target_minutes * 100

    @staticmethod
    def remaining_minutes(elapsed_minutes: int, target_minutes: int) -> int:
        return target_minutes - elapsed_minutes

    @staticmethod
    def evaluate(timer: SLATimer, now: datetime) -> Tuple[int, float]:
        """
        Returns:
            Tuple of (elapsed_minutes, percentage_elapsed)
        """
        elapsed = SLACalculator.elapsed_minutes(timer, now)
        return elapsed, SLACalculator.percentage_elapsed(elapsed, timer.target_time)

    @staticmethod
    def format_minutes(minutes: float) -> str:
        """Render minutes as 'Xh Ym'."""
        hours = int(minutes // 60)
        mins = int(round(minutes % 60))
        return f"{hours}h {mins}m"


@dataclass(frozen=True)
class DayWindow:
    """Opening window of one weekday, as 'HH:MM' strings."""
    start: str
    end: str

    def contains(self, hhmm: str) -> bool:
        return self.start <= hhmm <= self.end


@dataclass(frozen=True)
class BusinessHoursSchedule:
    """
    Weekly business hours in a timezone, with holiday dates.

    Accepts per-day entries either as "09:00-18:00" strings or as
    {"start": "09:00", "end": "18:00"} mappings; a missing day, an empty
    value or "closed" means closed all day.
    """

    windows: Mapping[str, DayWindow] = field(default_factory=dict)
    timezone: str = "UTC"
    holidays: Tuple[str, ...] = ()

    @classmethod
    def from_config(
        cls,
        schedule: Optional[Mapping[str, Any]],
        timezone: str = "UTC",
        holidays: Optional[list] = None
    ) -> "BusinessHoursSchedule":
        windows: Dict[str, DayWindow] = {}
        for day, value in (schedule or {}).items():
            window = cls._parse_window(value)
            if window is not None:
                windows[day.strip().lower()] = window
        return cls(
            windows=windows,
            timezone=timezone or "UTC",
            holidays=tuple(holidays or ())
        )

    @classmethod
    def from_policy(cls, policy: SLAPolicy) -> "BusinessHoursSchedule":
        return cls.from_config(policy.business_hours, policy.timezone, policy.holidays)

    @staticmethod
    def _parse_window(value: Any) -> Optional[DayWindow]:
        if not value:
            return None
        if isinstance(value, str):
            if value.strip().lower() == "closed" or "-" not in value:
                return None
            start, _, end = value.partition("-")
            start, end = start.strip(), end.strip()
        elif isinstance(value, Mapping):
            start, end = value.get("start"), value.get("end")
        else:
            return None
        if not start or not end:
            return None
        return DayWindow(start=start, end=end)

    @property
    def is_configured(self) -> bool:
        return bool(self.windows)

    def _zone(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                "Unknown business hours timezone, falling back to UTC",
                extra={"timezone": self.timezone}
            )
            return ZoneInfo("UTC")

    def is_open(self, at: datetime) -> bool:
        """
        Check whether `at` falls within business hours.

        An unconfigured schedule means 24/7.
        """
        if not self.is_configured:
            return True

        local = at.astimezone(self._zone())
        if local.date().isoformat() in self.holidays:
            return False

        window = self.windows.get(WEEKDAYS[local.weekday()])
        if window is None:
            return False
        return window.contains(local.strftime("%H:%M"))


def is_within_business_hours(policy: SLAPolicy, at: datetime) -> bool:
    """Business hours check for a policy; policies without business hours are always open."""
    if not policy.use_business_hours:
        return True
    return BusinessHoursSchedule.from_policy(policy).is_open(at)


def should_pause_off_hours(policy: SLAPolicy, at: datetime) -> bool:
    """True when the policy pauses timers off-hours and `at` is off-hours."""
    return (
        policy.use_business_hours
        and policy.pause_off_hours
        and not is_within_business_hours(policy, at)
    )
