"""
SLA Application Layer
======================

Application layer for the SLA timer engine.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Policy seed validation and structured results

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from slaflow.sla.application.dto import (
    PriorityTargets,
    SLAPolicyConfig,
    SLAPolicyFile,
    TimerStartResult,
    SLATimerMetrics,
    SweepSummary,
    SLAStats,
)
from slaflow.sla.application.services import (
    PolicyResolver,
    SLANotifier,
    SLATimerService,
    SLAMonitorService,
    SLAStatsService,
    ISLAPolicyRepository,
    ISLATimerRepository,
    ISLABreachRepository,
    ISLAEscalationRepository,
    ITicketStore,
    INotificationSink,
    IUnitOfWork,
    TimerWriteGuard,
    utc_now,
)

__all__ = [
    # DTOs
    "PriorityTargets",
    "SLAPolicyConfig",
    "SLAPolicyFile",
    "TimerStartResult",
    "SLATimerMetrics",
    "SweepSummary",
    "SLAStats",
    # Services
    "PolicyResolver",
    "SLANotifier",
    "SLATimerService",
    "SLAMonitorService",
    "SLAStatsService",
    "utc_now",
    # Repository Interfaces
    "ISLAPolicyRepository",
    "ISLATimerRepository",
    "ISLABreachRepository",
    "ISLAEscalationRepository",
    # External Interfaces
    "ITicketStore",
    "INotificationSink",
    "IUnitOfWork",
    "TimerWriteGuard",
]
