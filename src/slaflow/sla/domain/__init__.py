"""
SLA Domain Layer
================

Domain layer for the SLA timer engine.

Contains:
- Entities: Core business objects (SLAPolicy, SLATimer, SLABreach, SLAEscalation)
- External views: TicketSnapshot, AgentLoad, Notification
- Value Objects: BusinessHoursSchedule
- Domain Services: Stateless business logic (SLACalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from slaflow.sla.domain.entities import (
    SLAPolicy,
    SLATimer,
    SLABreach,
    SLAEscalation,
    TicketSnapshot,
    AgentLoad,
    Notification,
)
from slaflow.sla.domain.value_objects import (
    SLACalculator,
    BusinessHoursSchedule,
    DayWindow,
    is_within_business_hours,
    should_pause_off_hours,
)

__all__ = [
    # Entities
    "SLAPolicy",
    "SLATimer",
    "SLABreach",
    "SLAEscalation",
    "TicketSnapshot",
    "AgentLoad",
    "Notification",
    # Value Objects & Services
    "SLACalculator",
    "BusinessHoursSchedule",
    "DayWindow",
    "is_within_business_hours",
    "should_pause_off_hours",
]
