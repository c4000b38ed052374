"""
SLA Domain Entities
====================

Pure Python domain entities for SLA timers.

Following Domain-Driven Design principles, these entities contain
business logic (state transitions, policy lookups) and are free of
infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from slaflow.config import (
    Priority, TimerType, TimerStatus,
    ACTIVE_TIMER_STATUSES, VALID_PRIORITIES
)
from slaflow.core import DomainException


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SLAPolicy:
    """
    SLA policy entity.

    Holds per-priority response/resolution targets in minutes, the
    escalation thresholds, pause rules and the optional department and
    category scopes used by policy resolution.
    """

    id: str
    name: str

    # Targets in minutes, per priority
    low_response_time: Optional[int] = None
    low_resolution_time: Optional[int] = None
    medium_response_time: Optional[int] = None
    medium_resolution_time: Optional[int] = None
    high_response_time: Optional[int] = None
    high_resolution_time: Optional[int] = None
    urgent_response_time: Optional[int] = None
    urgent_resolution_time: Optional[int] = None

    description: Optional[str] = None
    is_active: bool = True
    is_default: bool = False

    # Business hours
    use_business_hours: bool = False
    business_hours: Dict[str, Any] = field(default_factory=dict)
    timezone: str = "UTC"
    holidays: List[str] = field(default_factory=list)

    # Escalation thresholds (percent of target elapsed)
    escalation_level1: int = 80
    escalation_level2: int = 95

    # Pause rules
    pause_on_waiting: bool = True
    pause_on_hold: bool = True
    pause_off_hours: bool = False

    # Scope filters; None or empty means "match all"
    department_ids: Optional[List[str]] = None
    category_ids: Optional[List[str]] = None

    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        """Validate thresholds on initialization."""
        if not 0 < self.escalation_level1 <= 100:
            raise ValueError("escalation_level1 must be within (0, 100]")
        if not 0 < self.escalation_level2 <= 100:
            raise ValueError("escalation_level2 must be within (0, 100]")

    def response_time_for(self, priority: Optional[str]) -> Optional[int]:
        """Response target in minutes for a priority, None when not configured."""
        return self._target_for(priority, TimerType.RESPONSE)

    def resolution_time_for(self, priority: Optional[str]) -> Optional[int]:
        """Resolution target in minutes for a priority, None when not configured."""
        return self._target_for(priority, TimerType.RESOLUTION)

    def target_for(self, priority: Optional[str], timer_type: str) -> Optional[int]:
        return self._target_for(priority, timer_type)

    def _target_for(self, priority: Optional[str], timer_type: str) -> Optional[int]:
        if not priority:
            return None
        key = priority.strip().lower()
        if key not in VALID_PRIORITIES:
            return None
        minutes = getattr(self, f"{key}_{timer_type}_time", None)
        # Zero is treated as "not configured"
        return minutes or None

    def applies_to(
        self,
        department_id: Optional[str] = None,
        category_id: Optional[str] = None
    ) -> bool:
        """Check department/category scope (empty scope matches everything)."""
        department_match = not self.department_ids or (
            department_id is not None and department_id in self.department_ids
        )
        category_match = not self.category_ids or (
            category_id is not None and category_id in self.category_ids
        )
        return department_match and category_match


@dataclass
class SLATimer:
    """
    SLA timer entity.

    One countdown for one ticket (conversation) and one timer type.
    State machine: running <-> paused -> {breached, stopped};
    breached -> stopped; stopped is terminal.
    """

    id: str
    conversation_id: str
    policy_id: Optional[str]
    timer_type: str
    target_time: int

    status: str = TimerStatus.RUNNING
    remaining_time: int = 0
    elapsed_time: int = 0
    total_paused_time: int = 0
    initial_priority: Optional[str] = None

    started_at: datetime = field(default_factory=_utcnow)
    paused_at: Optional[datetime] = None
    pause_reason: Optional[str] = None
    resumed_at: Optional[datetime] = None
    breached_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Escalation de-duplication
    level1_notified_at: Optional[datetime] = None
    level2_notified_at: Optional[datetime] = None

    def __post_init__(self):
        if self.timer_type not in (TimerType.RESPONSE, TimerType.RESOLUTION):
            raise ValueError(f"Unknown timer type: {self.timer_type}")
        if self.target_time <= 0:
            raise ValueError("target_time must be positive")

    @property
    def is_active(self) -> bool:
        """Running or paused."""
        return self.status in ACTIVE_TIMER_STATUSES

    @property
    def is_running(self) -> bool:
        return self.status == TimerStatus.RUNNING

    @property
    def is_paused(self) -> bool:
        return self.status == TimerStatus.PAUSED

    def pause(self, reason: Optional[str], timestamp: Optional[datetime] = None) -> None:
        """Transition running -> paused."""
        if self.status != TimerStatus.RUNNING:
            raise DomainException(
                f"Cannot pause timer in status '{self.status}'",
                {"timer_id": self.id}
            )
        self.status = TimerStatus.PAUSED
        self.paused_at = timestamp or _utcnow()
        self.pause_reason = reason

    def resume(self, timestamp: Optional[datetime] = None) -> int:
        """
        Transition paused -> running.

        Returns:
            Whole minutes added to total_paused_time
        """
        if self.status != TimerStatus.PAUSED:
            raise DomainException(
                f"Cannot resume timer in status '{self.status}'",
                {"timer_id": self.id}
            )
        now = timestamp or _utcnow()
        pause_duration = 0
        if self.paused_at is not None:
            pause_duration = max(0, int((now - self.paused_at).total_seconds() // 60))
        self.total_paused_time += pause_duration
        self.status = TimerStatus.RUNNING
        self.resumed_at = now
        self.pause_reason = None
        return pause_duration

    def stop(self, timestamp: Optional[datetime] = None) -> None:
        """Transition to the terminal stopped state."""
        if self.status == TimerStatus.STOPPED:
            raise DomainException("Timer already stopped", {"timer_id": self.id})
        self.status = TimerStatus.STOPPED
        self.completed_at = timestamp or _utcnow()

    def mark_breached(self, timestamp: Optional[datetime] = None) -> None:
        """Transition running -> breached."""
        if self.status != TimerStatus.RUNNING:
            raise DomainException(
                f"Cannot breach timer in status '{self.status}'",
                {"timer_id": self.id}
            )
        self.status = TimerStatus.BREACHED
        self.breached_at = timestamp or _utcnow()

    def record_progress(self, elapsed_minutes: int) -> None:
        self.elapsed_time = elapsed_minutes
        self.remaining_time = self.target_time - elapsed_minutes


@dataclass(frozen=True)
class SLABreach:
    """Immutable breach record, written once per timer."""

    id: str
    timer_id: str
    conversation_id: str
    breach_type: str
    target_time: int
    actual_time: int
    breach_time: int
    priority: str = "unknown"
    status: str = "unknown"
    assigned_to: Optional[str] = None
    department: Optional[str] = None
    breached_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def breach_type_for(cls, timer_type: str) -> str:
        return f"{timer_type}_breach"


@dataclass(frozen=True)
class SLAEscalation:
    """Append-only escalation log entry (level 1, 2, or 3 for breach)."""

    id: str
    conversation_id: str
    escalation_level: int
    escalation_type: str
    reason: str
    timer_id: Optional[str] = None
    escalated_at: datetime = field(default_factory=_utcnow)


# ========== External collaborator views ==========

@dataclass
class TicketSnapshot:
    """Read-only view of a ticket as provided by the ticket store."""

    id: str
    priority: str = Priority.MEDIUM
    status: str = "open"
    department_id: Optional[str] = None
    category_id: Optional[str] = None
    assignee_id: Optional[str] = None
    channel: Optional[str] = None
    subject: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "priority": self.priority,
            "status": self.status,
            "department_id": self.department_id,
            "category_id": self.category_id,
            "assignee_id": self.assignee_id,
            "channel": self.channel,
            "subject": self.subject,
            "tags": list(self.tags),
        }


@dataclass(frozen=True)
class AgentLoad:
    """An agent with its count of open assigned tickets."""

    agent_id: str
    open_tickets: int
    is_active: bool = True


@dataclass(frozen=True)
class Notification:
    """Message handed to the notification sink."""

    recipient: str
    subject: str
    body: str
    priority: str = Priority.MEDIUM
    type: str = "notification"
    link: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
