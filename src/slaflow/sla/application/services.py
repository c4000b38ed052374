"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations

All timer mutations for a ticket run inside a TimerWriteGuard section for
that ticket, whichever caller (workflow node or monitor sweep) issues them;
the section commits before the ticket lock is released.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from slaflow.config import (
    settings, TimerType, TimerStatus, TicketStatus,
    EscalationType, NotificationType,
    ACTIVE_TIMER_STATUSES, CLOSED_TICKET_STATUSES, OFF_HOURS_PAUSE_REASON
)
from slaflow.sla.domain import (
    SLAPolicy, SLATimer, SLABreach, SLAEscalation,
    TicketSnapshot, AgentLoad, Notification,
    SLACalculator, should_pause_off_hours, is_within_business_hours
)
from slaflow.sla.application.dto import (
    TimerStartResult, SLATimerMetrics, SweepSummary, SLAStats,
    PolicyCounts, TimerCounts, BreachCounts, ComplianceStats, AverageTime
)
from slaflow.shared.infrastructure.locks import TicketLockRegistry
from slaflow.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ISLAPolicyRepository(ABC):
    """Interface for SLA policy data access."""

    @abstractmethod
    async def get_by_id(self, policy_id: str) -> Optional[SLAPolicy]:
        """Get policy by ID."""

    @abstractmethod
    async def list_active(self) -> List[SLAPolicy]:
        """Active policies in creation order."""

    @abstractmethod
    async def list_all(self) -> List[SLAPolicy]:
        """All policies in creation order."""

    @abstractmethod
    async def save(self, policy: SLAPolicy) -> SLAPolicy:
        """Create or replace a policy. Rejects a second default policy."""


class ISLATimerRepository(ABC):
    """Interface for SLA timer data access."""

    @abstractmethod
    async def get_by_id(self, timer_id: str) -> Optional[SLATimer]:
        """Get timer by ID."""

    @abstractmethod
    async def list_by_conversation(
        self,
        conversation_id: str,
        statuses: Optional[List[str]] = None,
        timer_type: Optional[str] = None
    ) -> List[SLATimer]:
        """Timers of one ticket, optionally filtered."""

    @abstractmethod
    async def list_by_status(self, statuses: Optional[List[str]] = None) -> List[SLATimer]:
        """Timers in the given statuses (all timers when None)."""

    @abstractmethod
    async def create_many(self, timers: List[SLATimer]) -> List[SLATimer]:
        """Persist new timers together."""

    @abstractmethod
    async def update(self, timer: SLATimer) -> SLATimer:
        """Persist a modified timer."""


class ISLABreachRepository(ABC):
    """Interface for SLA breach records."""

    @abstractmethod
    async def create(self, breach: SLABreach) -> SLABreach:
        """Create breach record."""

    @abstractmethod
    async def get_by_timer(self, timer_id: str) -> Optional[SLABreach]:
        """Breach record of a timer, if any."""

    @abstractmethod
    async def list(self) -> List[SLABreach]:
        """All breach records."""


class ISLAEscalationRepository(ABC):
    """Interface for the escalation log."""

    @abstractmethod
    async def create(self, escalation: SLAEscalation) -> SLAEscalation:
        """Append escalation entry."""

    @abstractmethod
    async def list_by_conversation(self, conversation_id: str) -> List[SLAEscalation]:
        """Escalations of one ticket, oldest first."""

    @abstractmethod
    async def list(self) -> List[SLAEscalation]:
        """All escalation entries."""


class ITicketStore(ABC):
    """Interface to the external ticket store."""

    @abstractmethod
    async def get_ticket(self, ticket_id: str) -> Optional[TicketSnapshot]:
        """Read ticket by ID."""

    @abstractmethod
    async def update_fields(self, ticket_id: str, fields: Dict[str, object]) -> None:
        """Write field updates (priority/status/category/tags...)."""

    @abstractmethod
    async def assign(self, ticket_id: str, user_id: str) -> None:
        """Assign ticket to a user."""

    @abstractmethod
    async def add_note(self, ticket_id: str, content: str, internal: bool = True) -> None:
        """Add internal or public note."""

    @abstractmethod
    async def list_agent_loads(self) -> List[AgentLoad]:
        """Agents with open ticket counts, for round-robin assignment."""

    @abstractmethod
    async def list_supervisors(self) -> List[str]:
        """User IDs notified on escalations of unassigned tickets and on breaches."""


class INotificationSink(ABC):
    """Interface to the notification delivery channel."""

    @abstractmethod
    async def send(self, notification: Notification) -> bool:
        """Send notification. Delivery/retry policy is owned by the sink."""


class IUnitOfWork(ABC):
    """Transaction boundary of the stores behind the repositories."""

    @abstractmethod
    async def commit(self) -> None:
        """Make pending writes durable and visible to other units of work."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard pending writes."""


# ========== Application Services ==========

class TimerWriteGuard:
    """
    Critical section for the timers of one ticket.

    Holds the ticket lock and commits the unit of work before releasing it,
    so the next holder reads what the previous one wrote. Rolls back when
    the section raises. Without a unit of work (in-memory stores) only the
    lock is taken.
    """

    def __init__(self, locks: TicketLockRegistry, unit_of_work: Optional[IUnitOfWork] = None):
        self.locks = locks
        self._unit_of_work = unit_of_work

    @asynccontextmanager
    async def hold(self, conversation_id: str) -> AsyncIterator[None]:
        async with self.locks.hold(conversation_id):
            try:
                yield
            except Exception:
                if self._unit_of_work is not None:
                    await self._unit_of_work.rollback()
                raise
            if self._unit_of_work is not None:
                await self._unit_of_work.commit()


class PolicyResolver:
    """
    Selects the single SLA policy applicable to a ticket.

    Non-default policies are checked in creation order; the default policy
    is the fallback.
    """

    def __init__(self, policy_repository: ISLAPolicyRepository):
        self._policy_repo = policy_repository

    async def resolve(
        self,
        department_id: Optional[str] = None,
        category_id: Optional[str] = None
    ) -> Optional[SLAPolicy]:
        """
        Resolve the applicable policy.

        Args:
            department_id: Ticket department
            category_id: Ticket category

        Returns:
            Matching policy, the default policy, or None
        """
        policies = await self._policy_repo.list_active()
        # Stable sort keeps creation order within each group
        ordered = sorted(policies, key=lambda p: p.is_default)

        for policy in ordered:
            if policy.is_default:
                continue
            if policy.applies_to(department_id, category_id):
                return policy

        return next((p for p in ordered if p.is_default), None)

    async def get_policy(self, policy_id: str) -> Optional[SLAPolicy]:
        return await self._policy_repo.get_by_id(policy_id)


class SLANotifier:
    """Composes escalation and breach notifications for the sink."""

    def __init__(self, ticket_store: ITicketStore, sink: INotificationSink):
        self._tickets = ticket_store
        self._sink = sink

    async def _recipients(self, ticket: Optional[TicketSnapshot], include_supervisors: bool) -> List[str]:
        recipients: List[str] = []
        if ticket and ticket.assignee_id:
            recipients.append(ticket.assignee_id)
        if include_supervisors or not recipients:
            for supervisor_id in await self._tickets.list_supervisors():
                if supervisor_id not in recipients:
                    recipients.append(supervisor_id)
        return recipients

    async def recipients_for(self, conversation_id: str, include_supervisors: bool = False) -> List[str]:
        """Assignee of a ticket, plus supervisors when asked or when unassigned."""
        ticket = await self._tickets.get_ticket(conversation_id)
        return await self._recipients(ticket, include_supervisors)

    async def notify_escalation(self, timer: SLATimer, level: int, percentage: float) -> int:
        """Notify the assignee, or all supervisors when unassigned."""
        ticket = await self._tickets.get_ticket(timer.conversation_id)
        unassigned = not (ticket and ticket.assignee_id)
        level_text = "Warning" if level == 1 else "Critical"
        prefix = "Unassigned Ticket - " if unassigned else ""
        subject = f"{prefix}SLA {level_text}: {timer.timer_type} timer at {percentage:.0f}%"
        body = (
            f"Ticket {timer.conversation_id}{' (UNASSIGNED)' if unassigned else ''} "
            f"is at {percentage:.0f}% of its {timer.timer_type} time limit"
        )

        recipients = await self._recipients(ticket, include_supervisors=False)
        for recipient in recipients:
            await self._sink.send(Notification(
                recipient=recipient,
                subject=subject,
                body=body,
                priority="high" if level == 2 else "medium",
                type=NotificationType.SLA_RISK,
                link=f"/admin/tickets/{timer.conversation_id}",
                metadata={
                    "conversation_id": timer.conversation_id,
                    "timer_id": timer.id,
                    "escalation_level": level,
                    "is_unassigned": unassigned,
                },
            ))

        logger.info(
            "SLA escalation notification sent",
            extra={
                "conversation_id": timer.conversation_id,
                "timer_id": timer.id,
                "level": level,
                "recipients": len(recipients),
            }
        )
        return len(recipients)

    async def notify_breach(self, timer: SLATimer, breach: SLABreach) -> int:
        """Notify the assignee and every supervisor."""
        ticket = await self._tickets.get_ticket(timer.conversation_id)
        unassigned = not (ticket and ticket.assignee_id)
        prefix = "Unassigned Ticket - " if unassigned else ""
        subject = f"{prefix}SLA Breach: {timer.timer_type} time exceeded"
        body = (
            f"Ticket {timer.conversation_id}{' (UNASSIGNED)' if unassigned else ''} "
            f"has breached its {timer.timer_type} SLA by {breach.breach_time} minutes"
        )

        recipients = await self._recipients(ticket, include_supervisors=True)
        for recipient in recipients:
            await self._sink.send(Notification(
                recipient=recipient,
                subject=subject,
                body=body,
                priority="urgent",
                type=NotificationType.SLA_BREACH,
                link=f"/admin/tickets/{timer.conversation_id}",
                metadata={
                    "conversation_id": timer.conversation_id,
                    "breach_id": breach.id,
                    "is_unassigned": unassigned,
                },
            ))

        logger.warning(
            "SLA breach notification sent",
            extra={
                "conversation_id": timer.conversation_id,
                "timer_id": timer.id,
                "overage_minutes": breach.breach_time,
                "recipients": len(recipients),
            }
        )
        return len(recipients)


class SLATimerService:
    """
    Timer lifecycle manager: start, pause, resume, stop.

    Coordinates policy resolution with timer persistence. Every public
    mutation holds the ticket lock for its whole read-modify-write.
    """

    def __init__(
        self,
        timer_repository: ISLATimerRepository,
        policy_resolver: PolicyResolver,
        locks: TicketLockRegistry,
        clock: Optional[Clock] = None,
        unit_of_work: Optional[IUnitOfWork] = None
    ):
        self._timer_repo = timer_repository
        self._resolver = policy_resolver
        self._locks = locks
        self._guard = TimerWriteGuard(locks, unit_of_work)
        self._clock = clock or utc_now

    @property
    def locks(self) -> TicketLockRegistry:
        return self._locks

    async def start_timers(
        self,
        conversation_id: str,
        priority: str,
        department_id: Optional[str] = None,
        category_id: Optional[str] = None,
        restart: bool = False
    ) -> TimerStartResult:
        """
        Start response and resolution timers from the applicable policy.

        Args:
            conversation_id: Ticket ID
            priority: Ticket priority (case-insensitive)
            department_id: Used for policy resolution
            category_id: Used for policy resolution
            restart: Stop existing active timers instead of refusing

        Returns:
            TimerStartResult; started=False with a reason when no policy or
            no targets apply, or when active timers already exist
        """
        policy = await self._resolver.resolve(department_id, category_id)
        if policy is None:
            logger.info(
                "No applicable SLA policy",
                extra={"conversation_id": conversation_id}
            )
            return TimerStartResult(
                started=False,
                conversation_id=conversation_id,
                reason="No applicable SLA policy"
            )

        return await self.start_timers_from_policy(conversation_id, priority, policy, restart)

    async def start_timers_from_policy(
        self,
        conversation_id: str,
        priority: str,
        policy: SLAPolicy,
        restart: bool = False
    ) -> TimerStartResult:
        """Start timers using the targets of a given policy."""
        response_minutes = policy.response_time_for(priority)
        resolution_minutes = policy.resolution_time_for(priority)

        if not response_minutes or not resolution_minutes:
            logger.info(
                "No SLA targets configured for priority",
                extra={
                    "conversation_id": conversation_id,
                    "priority": priority,
                    "policy_id": policy.id,
                }
            )
            return TimerStartResult(
                started=False,
                conversation_id=conversation_id,
                policy_id=policy.id,
                reason=f"No SLA targets configured for priority '{priority}'"
            )

        return await self._create_timers(
            conversation_id, priority, policy.id,
            response_minutes, resolution_minutes,
            start_paused=should_pause_off_hours(policy, self._clock()),
            restart=restart
        )

    async def start_timers_with_durations(
        self,
        conversation_id: str,
        priority: str,
        response_minutes: int,
        resolution_minutes: int,
        policy_id: Optional[str] = None,
        restart: bool = False
    ) -> TimerStartResult:
        """Start timers with literal targets (custom workflow durations)."""
        if response_minutes <= 0 or resolution_minutes <= 0:
            return TimerStartResult(
                started=False,
                conversation_id=conversation_id,
                policy_id=policy_id,
                reason="SLA durations must be positive"
            )
        return await self._create_timers(
            conversation_id, priority, policy_id,
            response_minutes, resolution_minutes,
            start_paused=False,
            restart=restart
        )

    async def _create_timers(
        self,
        conversation_id: str,
        priority: str,
        policy_id: Optional[str],
        response_minutes: int,
        resolution_minutes: int,
        start_paused: bool,
        restart: bool
    ) -> TimerStartResult:
        async with self._guard.hold(conversation_id):
            now = self._clock()
            active = await self._timer_repo.list_by_conversation(
                conversation_id, statuses=ACTIVE_TIMER_STATUSES
            )
            if active:
                if not restart:
                    logger.warning(
                        "Active SLA timers already exist",
                        extra={"conversation_id": conversation_id, "active": len(active)}
                    )
                    return TimerStartResult(
                        started=False,
                        conversation_id=conversation_id,
                        policy_id=policy_id,
                        reason="active timers already exist"
                    )
                for timer in active:
                    timer.stop(now)
                    await self._timer_repo.update(timer)

            status = TimerStatus.PAUSED if start_paused else TimerStatus.RUNNING
            timers = [
                SLATimer(
                    id=str(uuid4()),
                    conversation_id=conversation_id,
                    policy_id=policy_id,
                    timer_type=timer_type,
                    target_time=minutes,
                    remaining_time=minutes,
                    elapsed_time=0,
                    status=status,
                    initial_priority=priority,
                    started_at=now,
                    paused_at=now if start_paused else None,
                    pause_reason=OFF_HOURS_PAUSE_REASON if start_paused else None,
                )
                for timer_type, minutes in (
                    (TimerType.RESPONSE, response_minutes),
                    (TimerType.RESOLUTION, resolution_minutes),
                )
            ]
            response_timer, resolution_timer = await self._timer_repo.create_many(timers)

        logger.info(
            "SLA timers started",
            extra={
                "conversation_id": conversation_id,
                "policy_id": policy_id,
                "priority": priority,
                "status": status,
                "response_minutes": response_minutes,
                "resolution_minutes": resolution_minutes,
            }
        )
        return TimerStartResult(
            started=True,
            conversation_id=conversation_id,
            policy_id=policy_id,
            status=status,
            response_timer_id=response_timer.id,
            resolution_timer_id=resolution_timer.id,
            response_minutes=response_minutes,
            resolution_minutes=resolution_minutes,
        )

    async def pause_timers(self, conversation_id: str, reason: str = "Manual pause") -> int:
        """
        Pause every running timer of a ticket.

        Returns:
            Number of timers paused (0 when none were running)
        """
        async with self._guard.hold(conversation_id):
            now = self._clock()
            timers = await self._timer_repo.list_by_conversation(
                conversation_id, statuses=[TimerStatus.RUNNING]
            )
            for timer in timers:
                timer.pause(reason, now)
                await self._timer_repo.update(timer)

        logger.info(
            "SLA timers paused",
            extra={"conversation_id": conversation_id, "count": len(timers), "reason": reason}
        )
        return len(timers)

    async def resume_timers(self, conversation_id: str) -> int:
        """
        Resume every paused timer of a ticket, accounting paused minutes.

        Returns:
            Number of timers resumed
        """
        async with self._guard.hold(conversation_id):
            now = self._clock()
            timers = await self._timer_repo.list_by_conversation(
                conversation_id, statuses=[TimerStatus.PAUSED]
            )
            for timer in timers:
                timer.resume(now)
                await self._timer_repo.update(timer)

        logger.info(
            "SLA timers resumed",
            extra={"conversation_id": conversation_id, "count": len(timers)}
        )
        return len(timers)

    async def stop_timers(self, conversation_id: str, timer_type: Optional[str] = None) -> int:
        """
        Stop active timers of a ticket (ticket responded to or resolved).

        Returns:
            Number of timers stopped
        """
        async with self._guard.hold(conversation_id):
            now = self._clock()
            timers = await self._timer_repo.list_by_conversation(
                conversation_id, statuses=ACTIVE_TIMER_STATUSES, timer_type=timer_type
            )
            for timer in timers:
                timer.stop(now)
                await self._timer_repo.update(timer)

        logger.info(
            "SLA timers stopped",
            extra={
                "conversation_id": conversation_id,
                "timer_type": timer_type,
                "count": len(timers),
            }
        )
        return len(timers)

    async def apply_status_pause_rules(
        self,
        conversation_id: str,
        ticket_status: str,
        policy: Optional[SLAPolicy] = None
    ) -> Optional[str]:
        """
        Pause or resume timers following the policy's status rules.

        Pauses on 'waiting' (pause_on_waiting) or 'on_hold' (pause_on_hold);
        any other status resumes paused timers. Timers paused for business
        hours are left to the monitor.

        Returns:
            "paused", "resumed" or None when nothing changed
        """
        active = await self._timer_repo.list_by_conversation(
            conversation_id, statuses=ACTIVE_TIMER_STATUSES
        )
        if not active:
            return None

        if policy is None and active[0].policy_id:
            policy = await self._resolver.get_policy(active[0].policy_id)
        if policy is None:
            return None

        should_pause = (
            (policy.pause_on_waiting and ticket_status == TicketStatus.WAITING)
            or (policy.pause_on_hold and ticket_status == TicketStatus.ON_HOLD)
        )

        if should_pause:
            if any(t.is_running for t in active):
                await self.pause_timers(conversation_id, f"Status changed to {ticket_status}")
                return "paused"
            return None

        paused = [t for t in active if t.is_paused and t.pause_reason != OFF_HOURS_PAUSE_REASON]
        if paused:
            await self.resume_timers(conversation_id)
            return "resumed"
        return None

    async def on_status_change(self, conversation_id: str, ticket_status: str) -> Optional[str]:
        """
        React to a ticket status change.

        Resolved/closed tickets stop their timers; other statuses go
        through the pause rules.
        """
        if ticket_status in CLOSED_TICKET_STATUSES:
            stopped = await self.stop_timers(conversation_id)
            return "stopped" if stopped else None
        return await self.apply_status_pause_rules(conversation_id, ticket_status)

    async def get_timers(self, conversation_id: str) -> List[SLATimer]:
        return await self._timer_repo.list_by_conversation(conversation_id)

    async def get_active_timers(self, conversation_id: str) -> List[SLATimer]:
        return await self._timer_repo.list_by_conversation(
            conversation_id, statuses=ACTIVE_TIMER_STATUSES
        )

    async def get_metrics(
        self,
        conversation_id: str,
        now: Optional[datetime] = None
    ) -> List[SLATimerMetrics]:
        """
        Elapsed/remaining metrics of every timer of a ticket. Read-only.

        A timer is at risk while active with less than 20% of its target left.
        """
        now = now or self._clock()
        metrics = []
        for timer in await self._timer_repo.list_by_conversation(conversation_id):
            if timer.is_active:
                elapsed, percentage = SLACalculator.evaluate(timer, now)
            else:
                elapsed = timer.elapsed_time
                percentage = SLACalculator.percentage_elapsed(elapsed, timer.target_time)
            remaining = timer.target_time - elapsed
            metrics.append(SLATimerMetrics(
                timer_id=timer.id,
                type=timer.timer_type,
                status=timer.status,
                target=timer.target_time,
                elapsed=elapsed,
                remaining=remaining,
                percentage=round(percentage, 2),
                at_risk=timer.is_active and remaining < timer.target_time * 0.2,
                breached=timer.status == TimerStatus.BREACHED,
            ))
        return metrics


class SLAMonitorService:
    """
    Periodic sweep over running timers.

    Detects breaches, fires level-1/level-2 escalations at most once per
    timer, and persists elapsed/remaining progress. Safe to run on a fixed
    interval: the *_notified_at stamps and the breach record lookup make
    repeated sweeps idempotent.
    """

    def __init__(
        self,
        timer_repository: ISLATimerRepository,
        policy_repository: ISLAPolicyRepository,
        breach_repository: ISLABreachRepository,
        escalation_repository: ISLAEscalationRepository,
        ticket_store: ITicketStore,
        notifier: SLANotifier,
        locks: TicketLockRegistry,
        clock: Optional[Clock] = None,
        unit_of_work: Optional[IUnitOfWork] = None
    ):
        self._timer_repo = timer_repository
        self._policy_repo = policy_repository
        self._breach_repo = breach_repository
        self._escalation_repo = escalation_repository
        self._tickets = ticket_store
        self._notifier = notifier
        self._guard = TimerWriteGuard(locks, unit_of_work)
        self._clock = clock or utc_now

    async def sweep(self, now: Optional[datetime] = None) -> SweepSummary:
        """
        Evaluate every active timer once.

        Per-timer errors are logged and counted; the sweep moves on and the
        next sweep retries.
        """
        now = now or self._clock()
        summary = SweepSummary(started_at=now)
        candidates = await self._timer_repo.list_by_status(ACTIVE_TIMER_STATUSES)
        policies: Dict[str, Optional[SLAPolicy]] = {}

        with log_latency(logger, "sla_sweep", candidates=len(candidates)):
            for candidate in candidates:
                try:
                    async with self._guard.hold(candidate.conversation_id):
                        # Re-read inside the lock; a workflow may have changed it
                        timer = await self._timer_repo.get_by_id(candidate.id)
                        if timer is None or not timer.is_active:
                            continue
                        policy = await self._policy_for(timer, policies)
                        if self._apply_business_hours(timer, policy, now, summary):
                            await self._timer_repo.update(timer)
                        if timer.is_paused:
                            continue
                        summary.timers_checked += 1
                        await self._check_timer(timer, policy, now, summary)
                except Exception as e:
                    summary.errors += 1
                    logger.error(
                        "SLA timer check failed",
                        extra={
                            "timer_id": candidate.id,
                            "conversation_id": candidate.conversation_id,
                            "error": str(e),
                        },
                        exc_info=True
                    )

        logger.info("SLA sweep finished", extra=summary.model_dump(mode="json"))
        return summary

    async def _policy_for(
        self,
        timer: SLATimer,
        cache: Dict[str, Optional[SLAPolicy]]
    ) -> Optional[SLAPolicy]:
        if not timer.policy_id:
            return None
        if timer.policy_id not in cache:
            cache[timer.policy_id] = await self._policy_repo.get_by_id(timer.policy_id)
        return cache[timer.policy_id]

    def _apply_business_hours(
        self,
        timer: SLATimer,
        policy: Optional[SLAPolicy],
        now: datetime,
        summary: SweepSummary
    ) -> bool:
        """
        Auto-pause off-hours / auto-resume on opening.

        Returns:
            True when the timer changed state
        """
        if policy is None or not (policy.use_business_hours and policy.pause_off_hours):
            return False

        open_now = is_within_business_hours(policy, now)
        if not open_now and timer.is_running:
            timer.pause(OFF_HOURS_PAUSE_REASON, now)
            summary.auto_paused += 1
            logger.info(
                "SLA timer auto-paused outside business hours",
                extra={"timer_id": timer.id, "conversation_id": timer.conversation_id}
            )
            return True

        if open_now and timer.is_paused and timer.pause_reason == OFF_HOURS_PAUSE_REASON:
            timer.resume(now)
            summary.auto_resumed += 1
            logger.info(
                "SLA timer auto-resumed in business hours",
                extra={"timer_id": timer.id, "conversation_id": timer.conversation_id}
            )
            return True
        return False

    @staticmethod
    def _thresholds(policy: Optional[SLAPolicy]) -> Tuple[int, int]:
        if policy is None:
            return settings.default_escalation_level1, settings.default_escalation_level2
        return policy.escalation_level1, policy.escalation_level2

    async def _check_timer(
        self,
        timer: SLATimer,
        policy: Optional[SLAPolicy],
        now: datetime,
        summary: SweepSummary
    ) -> None:
        """Breach, then level 2, then level 1; progress is always persisted."""
        elapsed, percentage = SLACalculator.evaluate(timer, now)

        if percentage >= 100:
            if await self._handle_breach_locked(timer, elapsed, now):
                summary.breaches += 1
            return

        timer.record_progress(elapsed)
        level1, level2 = self._thresholds(policy)
        try:
            if percentage >= level2 and timer.level2_notified_at is None:
                await self._escalate(timer, 2, percentage, level2, now)
                summary.level2_notifications += 1
            elif percentage >= level1 and timer.level1_notified_at is None:
                await self._escalate(timer, 1, percentage, level1, now)
                summary.level1_notifications += 1
        finally:
            await self._timer_repo.update(timer)

    async def _escalate(
        self,
        timer: SLATimer,
        level: int,
        percentage: float,
        threshold: int,
        now: datetime
    ) -> None:
        # Stamp only after the notification went out so a failed send is retried
        await self._notifier.notify_escalation(timer, level, percentage)
        if level == 2:
            timer.level2_notified_at = now
        else:
            timer.level1_notified_at = now
        await self._escalation_repo.create(SLAEscalation(
            id=str(uuid4()),
            conversation_id=timer.conversation_id,
            timer_id=timer.id,
            escalation_level=level,
            escalation_type=EscalationType.CRITICAL if level == 2 else EscalationType.WARNING,
            reason=(
                f"SLA {timer.timer_type} timer at {percentage:.0f}% "
                f"(level {level} threshold {threshold}%)"
            ),
            escalated_at=now,
        ))

    async def handle_breach(
        self,
        timer: SLATimer,
        actual_elapsed: int,
        now: Optional[datetime] = None
    ) -> Optional[SLABreach]:
        """
        Record a breach for a timer.

        Re-reads the timer under the ticket lock; no-op for timers that are
        no longer running.
        """
        now = now or self._clock()
        async with self._guard.hold(timer.conversation_id):
            current = await self._timer_repo.get_by_id(timer.id)
            if current is None:
                return None
            return await self._handle_breach_locked(current, actual_elapsed, now)

    async def _handle_breach_locked(
        self,
        timer: SLATimer,
        actual_elapsed: int,
        now: datetime
    ) -> Optional[SLABreach]:
        if not timer.is_running:
            return None

        breach = await self._breach_repo.get_by_timer(timer.id)
        if breach is None:
            ticket = await self._tickets.get_ticket(timer.conversation_id)
            breach = await self._breach_repo.create(SLABreach(
                id=str(uuid4()),
                timer_id=timer.id,
                conversation_id=timer.conversation_id,
                breach_type=SLABreach.breach_type_for(timer.timer_type),
                target_time=timer.target_time,
                actual_time=actual_elapsed,
                breach_time=actual_elapsed - timer.target_time,
                priority=ticket.priority if ticket else "unknown",
                status=ticket.status if ticket else "unknown",
                assigned_to=ticket.assignee_id if ticket else None,
                department=ticket.department_id if ticket else None,
                breached_at=now,
            ))

        # A retry can find the breach row without its escalation
        if not await self._has_breach_escalation(timer):
            await self._escalation_repo.create(SLAEscalation(
                id=str(uuid4()),
                conversation_id=timer.conversation_id,
                timer_id=timer.id,
                escalation_level=3,
                escalation_type=EscalationType.BREACH,
                reason=(
                    f"SLA {timer.timer_type} time breached by "
                    f"{breach.breach_time} minutes"
                ),
                escalated_at=now,
            ))

        # Status write last: until it lands, the next sweep retries
        timer.record_progress(actual_elapsed)
        timer.mark_breached(now)
        await self._timer_repo.update(timer)

        logger.warning(
            "SLA breach recorded",
            extra={
                "conversation_id": timer.conversation_id,
                "timer_id": timer.id,
                "timer_type": timer.timer_type,
                "overage_minutes": breach.breach_time,
            }
        )

        try:
            await self._notifier.notify_breach(timer, breach)
        except Exception as e:
            logger.error(
                "SLA breach notification failed",
                extra={"timer_id": timer.id, "error": str(e)}
            )
        return breach

    async def _has_breach_escalation(self, timer: SLATimer) -> bool:
        escalations = await self._escalation_repo.list_by_conversation(timer.conversation_id)
        return any(
            e.timer_id == timer.id and e.escalation_level == 3
            for e in escalations
        )

    async def breach_overdue_timers(
        self,
        conversation_id: str,
        now: Optional[datetime] = None
    ) -> List[SLABreach]:
        """Breach every running timer of a ticket whose target is used up."""
        now = now or self._clock()
        breaches = []
        async with self._guard.hold(conversation_id):
            timers = await self._timer_repo.list_by_conversation(
                conversation_id, statuses=[TimerStatus.RUNNING]
            )
            for timer in timers:
                elapsed, percentage = SLACalculator.evaluate(timer, now)
                if percentage >= 100:
                    breach = await self._handle_breach_locked(timer, elapsed, now)
                    if breach:
                        breaches.append(breach)
        return breaches


class SLAStatsService:
    """Aggregated SLA reporting over policies, timers, breaches and escalations."""

    def __init__(
        self,
        policy_repository: ISLAPolicyRepository,
        timer_repository: ISLATimerRepository,
        breach_repository: ISLABreachRepository,
        escalation_repository: ISLAEscalationRepository,
        clock: Optional[Clock] = None
    ):
        self._policy_repo = policy_repository
        self._timer_repo = timer_repository
        self._breach_repo = breach_repository
        self._escalation_repo = escalation_repository
        self._clock = clock or utc_now

    @staticmethod
    def _in_range(value: Optional[datetime], start: Optional[datetime], end: Optional[datetime]) -> bool:
        if start is None and end is None:
            return True
        if value is None:
            return False
        if start is not None and value < start:
            return False
        if end is not None and value > end:
            return False
        return True

    async def get_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> SLAStats:
        """
        Compute SLA statistics.

        Args:
            start: Only count records from this instant
            end: Only count records up to this instant
            now: Evaluation time for at-risk detection
        """
        now = now or self._clock()

        policies = await self._policy_repo.list_all()
        timers = [
            t for t in await self._timer_repo.list_by_status()
            if self._in_range(t.started_at, start, end)
        ]
        breaches = [
            b for b in await self._breach_repo.list()
            if self._in_range(b.breached_at, start, end)
        ]
        escalations = [
            e for e in await self._escalation_repo.list()
            if self._in_range(e.escalated_at, start, end)
        ]

        by_status = {status: 0 for status in (
            TimerStatus.RUNNING, TimerStatus.PAUSED, TimerStatus.BREACHED, TimerStatus.STOPPED
        )}
        at_risk = 0
        for timer in timers:
            by_status[timer.status] = by_status.get(timer.status, 0) + 1
            if timer.is_running:
                _, percentage = SLACalculator.evaluate(timer, now)
                if 80 <= percentage < 100:
                    at_risk += 1

        breaches_by_type: Dict[str, int] = {}
        for breach in breaches:
            breaches_by_type[breach.breach_type] = breaches_by_type.get(breach.breach_type, 0) + 1

        finished = by_status[TimerStatus.STOPPED] + by_status[TimerStatus.BREACHED]
        breached = by_status[TimerStatus.BREACHED]
        rate = ((finished - breached) / finished * 100) if finished else 0.0

        escalations_by_level: Dict[int, int] = {}
        for escalation in escalations:
            level = escalation.escalation_level
            escalations_by_level[level] = escalations_by_level.get(level, 0) + 1

        return SLAStats(
            policies=PolicyCounts(
                total=len(policies),
                active=sum(1 for p in policies if p.is_active)
            ),
            timers=TimerCounts(
                running=by_status[TimerStatus.RUNNING],
                paused=by_status[TimerStatus.PAUSED],
                breached=breached,
                stopped=by_status[TimerStatus.STOPPED],
                at_risk=at_risk
            ),
            breaches=BreachCounts(total=len(breaches), by_type=breaches_by_type),
            compliance=ComplianceStats(
                rate=round(rate, 2),
                total_timers=finished,
                met_sla=finished - breached,
                breached_sla=breached
            ),
            average_response=self._average(timers, TimerType.RESPONSE),
            average_resolution=self._average(timers, TimerType.RESOLUTION),
            escalations_by_level=escalations_by_level,
        )

    @staticmethod
    def _average(timers: List[SLATimer], timer_type: str) -> AverageTime:
        completed = [
            t for t in timers
            if t.timer_type == timer_type
            and t.status == TimerStatus.STOPPED
            and t.completed_at is not None
        ]
        if not completed:
            return AverageTime(minutes=0, formatted=SLACalculator.format_minutes(0))
        total = sum(
            SLACalculator.minutes_between(t.started_at, t.completed_at) - t.total_paused_time
            for t in completed
        )
        average = total / len(completed)
        return AverageTime(minutes=round(average), formatted=SLACalculator.format_minutes(average))
