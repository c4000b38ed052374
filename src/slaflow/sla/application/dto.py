"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA application layer.

These Pydantic models handle validation of policy seed files and the
structured results returned to callers. Following YAGNI - only what's needed.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from slaflow.config import settings, VALID_PRIORITIES


# ========== Type Aliases for Literals ==========
TimerTypeStr = Literal["response", "resolution"]
TimerStatusStr = Literal["running", "paused", "breached", "stopped"]


# ========== Policy configuration ==========

class PriorityTargets(BaseModel):
    """Response/resolution targets in minutes for one priority."""
    response: Optional[int] = Field(None, gt=0, description="Response target (minutes)")
    resolution: Optional[int] = Field(None, gt=0, description="Resolution target (minutes)")


class SLAPolicyConfig(BaseModel):
    """
    SLA policy as declared in the policy seed YAML.

    Example:
        - id: default-policy
          name: Standard Support SLA
          is_default: true
          targets:
            medium: {response: 240, resolution: 1440}
    """
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    is_active: bool = True
    is_default: bool = False
    targets: Dict[str, PriorityTargets] = Field(default_factory=dict)
    use_business_hours: bool = False
    business_hours: Dict[str, Any] = Field(default_factory=dict)
    timezone: str = "UTC"
    holidays: List[str] = Field(default_factory=list)
    escalation_level1: int = Field(default_factory=lambda: settings.default_escalation_level1, gt=0, le=100)
    escalation_level2: int = Field(default_factory=lambda: settings.default_escalation_level2, gt=0, le=100)
    pause_on_waiting: bool = True
    pause_on_hold: bool = True
    pause_off_hours: bool = False
    department_ids: Optional[List[str]] = None
    category_ids: Optional[List[str]] = None

    @field_validator("targets")
    @classmethod
    def validate_targets(cls, v: Dict[str, PriorityTargets]) -> Dict[str, PriorityTargets]:
        """Normalize priority keys and reject unknown priorities."""
        normalized = {}
        for priority, targets in v.items():
            key = priority.strip().lower()
            if key not in VALID_PRIORITIES:
                raise ValueError(f"unknown priority '{priority}'")
            normalized[key] = targets
        return normalized

    @model_validator(mode="after")
    def validate_thresholds(self) -> "SLAPolicyConfig":
        if self.escalation_level1 > self.escalation_level2:
            raise ValueError("escalation_level1 must not exceed escalation_level2")
        return self

    def to_domain(self) -> Any:
        """Convert to domain entity."""
        from slaflow.sla.domain import SLAPolicy

        target_fields = {}
        for priority in VALID_PRIORITIES:
            targets = self.targets.get(priority, PriorityTargets())
            target_fields[f"{priority}_response_time"] = targets.response
            target_fields[f"{priority}_resolution_time"] = targets.resolution

        return SLAPolicy(
            id=self.id,
            name=self.name,
            description=self.description,
            is_active=self.is_active,
            is_default=self.is_default,
            use_business_hours=self.use_business_hours,
            business_hours=dict(self.business_hours),
            timezone=self.timezone,
            holidays=list(self.holidays),
            escalation_level1=self.escalation_level1,
            escalation_level2=self.escalation_level2,
            pause_on_waiting=self.pause_on_waiting,
            pause_on_hold=self.pause_on_hold,
            pause_off_hours=self.pause_off_hours,
            department_ids=self.department_ids,
            category_ids=self.category_ids,
            **target_fields
        )


class SLAPolicyFile(BaseModel):
    """Top-level structure of the policy seed YAML."""
    policies: List[SLAPolicyConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_single_default(self) -> "SLAPolicyFile":
        defaults = [p.id for p in self.policies if p.is_default]
        if len(defaults) > 1:
            raise ValueError(f"only one default policy allowed, got {defaults}")
        return self


# ========== Result DTOs ==========

class TimerStartResult(BaseModel):
    """Outcome of starting SLA timers for a ticket."""
    started: bool
    conversation_id: str
    reason: Optional[str] = Field(None, description="Why timers were not started")
    policy_id: Optional[str] = None
    status: Optional[TimerStatusStr] = None
    response_timer_id: Optional[str] = None
    resolution_timer_id: Optional[str] = None
    response_minutes: Optional[int] = None
    resolution_minutes: Optional[int] = None

    def to_dict(self) -> dict:
        if self.started:
            return {"success": True, **self.model_dump(exclude_none=True)}
        return {
            "success": False,
            "message": self.reason or "SLA timers not started",
            "conversation_id": self.conversation_id,
        }


class SLATimerMetrics(BaseModel):
    """Point-in-time metrics of one timer."""
    timer_id: str
    type: TimerTypeStr
    status: TimerStatusStr
    target: int
    elapsed: int
    remaining: int
    percentage: float
    at_risk: bool
    breached: bool


class SweepSummary(BaseModel):
    """Counters collected during one monitor sweep."""
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    timers_checked: int = 0
    breaches: int = 0
    level1_notifications: int = 0
    level2_notifications: int = 0
    auto_paused: int = 0
    auto_resumed: int = 0
    errors: int = 0


# ========== Reporting DTOs ==========

class PolicyCounts(BaseModel):
    total: int
    active: int


class TimerCounts(BaseModel):
    running: int
    paused: int
    breached: int
    stopped: int
    at_risk: int


class BreachCounts(BaseModel):
    total: int
    by_type: Dict[str, int] = Field(default_factory=dict)


class ComplianceStats(BaseModel):
    rate: float = Field(..., description="Percentage of finished timers that met SLA")
    total_timers: int
    met_sla: int
    breached_sla: int


class AverageTime(BaseModel):
    minutes: int
    formatted: str


class SLAStats(BaseModel):
    """Aggregated SLA reporting figures."""
    policies: PolicyCounts
    timers: TimerCounts
    breaches: BreachCounts
    compliance: ComplianceStats
    average_response: AverageTime
    average_resolution: AverageTime
    escalations_by_level: Dict[int, int] = Field(default_factory=dict)
