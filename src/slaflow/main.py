"""
slaflow - Engine Composition
=============================

Wires repositories, collaborators and services into an SLAEngine.

Two ways to run it:
- build_in_memory_engine(): everything in process, for embedding and tests
- lifespan(): database-backed runtime with the policy seed file watcher
  and the APScheduler jobs (monitor sweep, time_scheduler workflows)

Modules:
- SLA: policy resolution, timer lifecycle, monitoring, statistics
- Workflows: graph execution and trigger dispatch
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import AsyncGenerator, AsyncIterator, List, Optional

from slaflow.config import settings
from slaflow.infrastructure.database import (
    init_database, close_database, create_tables, get_session_context
)
from slaflow.sla.application import (
    PolicyResolver, SLANotifier, SLATimerService, SLAMonitorService, SLAStatsService,
    ISLAPolicyRepository, ISLATimerRepository, ISLABreachRepository,
    ISLAEscalationRepository, ITicketStore, INotificationSink, IUnitOfWork
)
from slaflow.sla.application.services import Clock
from slaflow.sla.domain import SLAPolicy
from slaflow.sla.infrastructure import (
    InMemoryPolicyRepository, InMemoryTimerRepository,
    InMemoryBreachRepository, InMemoryEscalationRepository,
    InMemoryTicketStore, InMemoryNotificationSink,
    SQLAlchemyPolicyRepository, SQLAlchemyTimerRepository,
    SQLAlchemyBreachRepository, SQLAlchemyEscalationRepository, SQLAlchemyUnitOfWork,
    LoggingNotificationSink, WebhookNotificationSink, CompositeNotificationSink,
    DEFAULT_POLICIES, PolicyFileLoader, PolicyFileWatcher, load_policies, SLAScheduler
)
from slaflow.workflows.application import (
    IWorkflowRepository, WorkflowCatalogService, WorkflowExecutor, WorkflowTriggerDispatcher
)
from slaflow.workflows.infrastructure import (
    InMemoryWorkflowRepository, SQLAlchemyWorkflowRepository
)
from slaflow.shared.infrastructure import TicketLockRegistry, setup_logging, get_logger

logger = get_logger(__name__)


@dataclass
class SLAEngine:
    """All services of one engine instance, sharing one lock registry."""

    policy_resolver: PolicyResolver
    timer_service: SLATimerService
    monitor_service: SLAMonitorService
    stats_service: SLAStatsService
    catalog_service: WorkflowCatalogService
    executor: WorkflowExecutor
    dispatcher: WorkflowTriggerDispatcher

    policy_repository: ISLAPolicyRepository
    timer_repository: ISLATimerRepository
    breach_repository: ISLABreachRepository
    escalation_repository: ISLAEscalationRepository
    workflow_repository: IWorkflowRepository
    ticket_store: ITicketStore
    notification_sink: INotificationSink
    locks: TicketLockRegistry = field(default_factory=TicketLockRegistry)

    @classmethod
    def build(
        cls,
        policy_repository: ISLAPolicyRepository,
        timer_repository: ISLATimerRepository,
        breach_repository: ISLABreachRepository,
        escalation_repository: ISLAEscalationRepository,
        workflow_repository: IWorkflowRepository,
        ticket_store: ITicketStore,
        notification_sink: INotificationSink,
        locks: Optional[TicketLockRegistry] = None,
        clock: Optional[Clock] = None,
        max_concurrency: Optional[int] = None,
        unit_of_work: Optional[IUnitOfWork] = None
    ) -> "SLAEngine":
        locks = locks or TicketLockRegistry()
        resolver = PolicyResolver(policy_repository)
        timer_service = SLATimerService(
            timer_repository, resolver, locks, clock=clock, unit_of_work=unit_of_work
        )
        monitor_service = SLAMonitorService(
            timer_repository,
            policy_repository,
            breach_repository,
            escalation_repository,
            ticket_store,
            SLANotifier(ticket_store, notification_sink),
            locks,
            clock=clock,
            unit_of_work=unit_of_work
        )
        executor = WorkflowExecutor(
            timer_service,
            monitor_service,
            resolver,
            escalation_repository,
            ticket_store,
            notification_sink,
            clock=clock
        )
        dispatcher = WorkflowTriggerDispatcher(
            workflow_repository,
            executor,
            timer_service,
            timer_repository,
            ticket_store,
            max_concurrency=max_concurrency
        )
        return cls(
            policy_resolver=resolver,
            timer_service=timer_service,
            monitor_service=monitor_service,
            stats_service=SLAStatsService(
                policy_repository, timer_repository, breach_repository,
                escalation_repository, clock=clock
            ),
            catalog_service=WorkflowCatalogService(workflow_repository),
            executor=executor,
            dispatcher=dispatcher,
            policy_repository=policy_repository,
            timer_repository=timer_repository,
            breach_repository=breach_repository,
            escalation_repository=escalation_repository,
            workflow_repository=workflow_repository,
            ticket_store=ticket_store,
            notification_sink=notification_sink,
            locks=locks
        )


def build_in_memory_engine(
    policies: Optional[List[SLAPolicy]] = None,
    ticket_store: Optional[ITicketStore] = None,
    notification_sink: Optional[INotificationSink] = None,
    clock: Optional[Clock] = None,
    max_concurrency: Optional[int] = None
) -> SLAEngine:
    """
    Engine backed by in-memory stores.

    Args:
        policies: Seed policies (built-in DEFAULT_POLICIES when None)
        ticket_store: Ticket collaborator (empty InMemoryTicketStore when None)
        notification_sink: Sink (InMemoryNotificationSink when None)
        clock: Time source for all services
    """
    if policies is None:
        policies = load_policies({"policies": DEFAULT_POLICIES})
    return SLAEngine.build(
        policy_repository=InMemoryPolicyRepository(policies),
        timer_repository=InMemoryTimerRepository(),
        breach_repository=InMemoryBreachRepository(),
        escalation_repository=InMemoryEscalationRepository(),
        workflow_repository=InMemoryWorkflowRepository(),
        ticket_store=ticket_store or InMemoryTicketStore(),
        notification_sink=notification_sink or InMemoryNotificationSink(),
        clock=clock,
        max_concurrency=max_concurrency
    )


def build_notification_sink(webhook_url: Optional[str] = None) -> INotificationSink:
    """Logging sink, plus the webhook sink when a URL is configured."""
    url = webhook_url or settings.notification_webhook_url
    if not url:
        return LoggingNotificationSink()
    return CompositeNotificationSink([LoggingNotificationSink(), WebhookNotificationSink(url)])


class SLARuntime:
    """
    Database-backed runtime handed out by lifespan().

    Each unit of work gets its own session and repositories; the lock
    registry and the collaborators are shared across sessions.
    """

    def __init__(
        self,
        ticket_store: ITicketStore,
        notification_sink: INotificationSink,
        clock: Optional[Clock] = None
    ):
        self.ticket_store = ticket_store
        self.notification_sink = notification_sink
        self.locks = TicketLockRegistry()
        self._clock = clock

    @asynccontextmanager
    async def engine(self) -> AsyncIterator[SLAEngine]:
        """
        Engine bound to one database session.

        Timer changes commit inside their ticket's critical section; the
        rest commits on exit. Dispatched workflows are drained before the
        session closes; they run one at a time since an AsyncSession is
        not safe for concurrent use.
        """
        async with get_session_context() as session:
            engine = SLAEngine.build(
                policy_repository=SQLAlchemyPolicyRepository(session),
                timer_repository=SQLAlchemyTimerRepository(session),
                breach_repository=SQLAlchemyBreachRepository(session),
                escalation_repository=SQLAlchemyEscalationRepository(session),
                workflow_repository=SQLAlchemyWorkflowRepository(session),
                ticket_store=self.ticket_store,
                notification_sink=self.notification_sink,
                locks=self.locks,
                clock=self._clock,
                max_concurrency=1,
                unit_of_work=SQLAlchemyUnitOfWork(session)
            )
            try:
                yield engine
            finally:
                await engine.dispatcher.drain()

    async def run_sweep(self, now: Optional[datetime] = None) -> None:
        """Scheduler job: one monitor sweep."""
        async with self.engine() as engine:
            await engine.monitor_service.sweep(now=now)

    async def run_time_trigger(self, now: Optional[datetime] = None) -> None:
        """Scheduler job: run time_scheduler workflows."""
        async with self.engine() as engine:
            await engine.dispatcher.on_time_tick(now=now)

    async def reload_policies(self, policies: List[SLAPolicy]) -> None:
        async with self.engine() as engine:
            for policy in policies:
                await engine.policy_repository.save(policy)


@asynccontextmanager
async def lifespan(
    ticket_store: ITicketStore,
    notification_sink: Optional[INotificationSink] = None,
    database_url: Optional[str] = None,
    policies_path: Optional[Path] = None,
    create_schema: bool = True,
    start_scheduler: bool = True
) -> AsyncGenerator[SLARuntime, None]:
    """
    Runtime lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database (and create tables when requested)
    3. Load SLA policies from the seed file
    4. Watch the seed file for changes
    5. Start the SLA scheduler

    SHUTDOWN:
    1. Stop the SLA scheduler
    2. Stop the policy file watcher
    3. Close notification sinks
    4. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA engine", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database(database_url)
    if create_schema:
        logger.info("Creating database tables")
        await create_tables()

    sink = notification_sink or build_notification_sink()
    runtime = SLARuntime(ticket_store, sink)

    logger.info("Loading SLA policies")
    loader = PolicyFileLoader(policies_path)
    await runtime.reload_policies(loader.parse())

    watcher = PolicyFileWatcher(loader, runtime.reload_policies)
    watcher.start_watching()

    scheduler = None
    if start_scheduler:
        scheduler = SLAScheduler()
        await scheduler.start(runtime.run_sweep, runtime.run_time_trigger)

    logger.info("SLA engine started successfully")

    try:
        yield runtime
    finally:
        # === SHUTDOWN ===
        logger.info("Shutting down SLA engine")

        if scheduler:
            await scheduler.stop()

        watcher.stop_watching()

        close = getattr(sink, "close", None)
        if close is not None:
            await close()

        await close_database()

        logger.info("SLA engine shutdown complete")
