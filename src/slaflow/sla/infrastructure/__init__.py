"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for the SLA engine:
- Models: SQLAlchemy ORM models
- Repositories: SQLAlchemy and in-memory data access
- External: Notification sinks, policy file loader/watcher, scheduler
"""

from slaflow.sla.infrastructure.models import (
    SLAPolicyModel,
    SLATimerModel,
    SLABreachModel,
    SLAEscalationModel,
)
from slaflow.sla.infrastructure.repositories import (
    SQLAlchemyPolicyRepository,
    SQLAlchemyTimerRepository,
    SQLAlchemyBreachRepository,
    SQLAlchemyEscalationRepository,
    SQLAlchemyUnitOfWork,
)
from slaflow.sla.infrastructure.memory import (
    InMemoryPolicyRepository,
    InMemoryTimerRepository,
    InMemoryBreachRepository,
    InMemoryEscalationRepository,
    InMemoryTicketStore,
    InMemoryNotificationSink,
)
from slaflow.sla.infrastructure.external import (
    LoggingNotificationSink,
    WebhookNotificationSink,
    CompositeNotificationSink,
    CircuitBreaker,
    DEFAULT_POLICIES,
    PolicyFileLoader,
    PolicyFileWatcher,
    load_policies,
    SLAScheduler,
)

__all__ = [
    "SLAPolicyModel",
    "SLATimerModel",
    "SLABreachModel",
    "SLAEscalationModel",
    "SQLAlchemyPolicyRepository",
    "SQLAlchemyTimerRepository",
    "SQLAlchemyBreachRepository",
    "SQLAlchemyEscalationRepository",
    "SQLAlchemyUnitOfWork",
    "InMemoryPolicyRepository",
    "InMemoryTimerRepository",
    "InMemoryBreachRepository",
    "InMemoryEscalationRepository",
    "InMemoryTicketStore",
    "InMemoryNotificationSink",
    "LoggingNotificationSink",
    "WebhookNotificationSink",
    "CompositeNotificationSink",
    "CircuitBreaker",
    "DEFAULT_POLICIES",
    "PolicyFileLoader",
    "PolicyFileWatcher",
    "load_policies",
    "SLAScheduler",
]
