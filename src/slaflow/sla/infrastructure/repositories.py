"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.
"""

from dataclasses import fields
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from slaflow.sla.application import (
    ISLAPolicyRepository, ISLATimerRepository,
    ISLABreachRepository, ISLAEscalationRepository, IUnitOfWork
)
from slaflow.sla.domain import SLAPolicy, SLATimer, SLABreach, SLAEscalation
from slaflow.sla.infrastructure.models import (
    SLAPolicyModel, SLATimerModel, SLABreachModel, SLAEscalationModel
)
from slaflow.core import RepositoryException


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """Backends without timezone support (SQLite) return naive UTC datetimes."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


_POLICY_FIELDS = [f.name for f in fields(SLAPolicy)]
_TIMER_FIELDS = [f.name for f in fields(SLATimer)]


def _policy_to_domain(model: SLAPolicyModel) -> SLAPolicy:
    values = {name: getattr(model, name) for name in _POLICY_FIELDS}
    values["business_hours"] = dict(model.business_hours or {})
    values["holidays"] = list(model.holidays or [])
    values["created_at"] = _aware(model.created_at)
    return SLAPolicy(**values)


def _timer_to_domain(model: SLATimerModel) -> SLATimer:
    values = {name: getattr(model, name) for name in _TIMER_FIELDS}
    for name in (
        "started_at", "paused_at", "resumed_at", "breached_at",
        "completed_at", "level1_notified_at", "level2_notified_at"
    ):
        values[name] = _aware(values[name])
    return SLATimer(**values)


def _breach_to_domain(model: SLABreachModel) -> SLABreach:
    return SLABreach(
        id=model.id,
        timer_id=model.timer_id,
        conversation_id=model.conversation_id,
        breach_type=model.breach_type,
        target_time=model.target_time,
        actual_time=model.actual_time,
        breach_time=model.breach_time,
        priority=model.priority,
        status=model.status,
        assigned_to=model.assigned_to,
        department=model.department,
        breached_at=_aware(model.breached_at)
    )


def _escalation_to_domain(model: SLAEscalationModel) -> SLAEscalation:
    return SLAEscalation(
        id=model.id,
        conversation_id=model.conversation_id,
        timer_id=model.timer_id,
        escalation_level=model.escalation_level,
        escalation_type=model.escalation_type,
        reason=model.reason,
        escalated_at=_aware(model.escalated_at)
    )


class SQLAlchemyPolicyRepository(ISLAPolicyRepository):
    """
    SQLAlchemy implementation of SLA policy repository.

    Handles persistence of SLAPolicy entities using async SQLAlchemy.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, policy_id: str) -> Optional[SLAPolicy]:
        model = await self._session.get(SLAPolicyModel, policy_id)
        return _policy_to_domain(model) if model else None

    async def list_active(self) -> List[SLAPolicy]:
        stmt = (
            select(SLAPolicyModel)
            .where(SLAPolicyModel.is_active == True)  # noqa: E712
            .order_by(SLAPolicyModel.created_at.asc(), SLAPolicyModel.id.asc())
        )
        result = await self._session.execute(stmt)
        return [_policy_to_domain(m) for m in result.scalars().all()]

    async def list_all(self) -> List[SLAPolicy]:
        stmt = select(SLAPolicyModel).order_by(
            SLAPolicyModel.created_at.asc(), SLAPolicyModel.id.asc()
        )
        result = await self._session.execute(stmt)
        return [_policy_to_domain(m) for m in result.scalars().all()]

    async def save(self, policy: SLAPolicy) -> SLAPolicy:
        """Insert or replace a policy by ID."""
        if policy.is_default:
            stmt = select(SLAPolicyModel.id).where(
                SLAPolicyModel.is_default == True,  # noqa: E712
                SLAPolicyModel.id != policy.id
            )
            result = await self._session.execute(stmt)
            other = result.scalar_one_or_none()
            if other is not None:
                raise RepositoryException(
                    "Only one default SLA policy allowed",
                    {"policy_id": policy.id, "existing_default": other}
                )

        model = await self._session.get(SLAPolicyModel, policy.id)
        if model is None:
            model = SLAPolicyModel(id=policy.id)
            self._session.add(model)

        for name in _POLICY_FIELDS:
            if name != "id":
                setattr(model, name, getattr(policy, name))

        await self._session.flush()
        return policy


class SQLAlchemyTimerRepository(ISLATimerRepository):
    """
    SQLAlchemy implementation of SLA timer repository.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, timer_id: str) -> Optional[SLATimer]:
        model = await self._session.get(SLATimerModel, timer_id, populate_existing=True)
        return _timer_to_domain(model) if model else None

    async def list_by_conversation(
        self,
        conversation_id: str,
        statuses: Optional[List[str]] = None,
        timer_type: Optional[str] = None
    ) -> List[SLATimer]:
        stmt = (
            select(SLATimerModel)
            .where(SLATimerModel.conversation_id == conversation_id)
            .execution_options(populate_existing=True)
        )
        if statuses is not None:
            stmt = stmt.where(SLATimerModel.status.in_(statuses))
        if timer_type is not None:
            stmt = stmt.where(SLATimerModel.timer_type == timer_type)
        stmt = stmt.order_by(SLATimerModel.started_at.asc(), SLATimerModel.timer_type.desc())

        result = await self._session.execute(stmt)
        return [_timer_to_domain(m) for m in result.scalars().all()]

    async def list_by_status(self, statuses: Optional[List[str]] = None) -> List[SLATimer]:
        stmt = select(SLATimerModel).execution_options(populate_existing=True)
        if statuses is not None:
            stmt = stmt.where(SLATimerModel.status.in_(statuses))
        stmt = stmt.order_by(SLATimerModel.started_at.asc())

        result = await self._session.execute(stmt)
        return [_timer_to_domain(m) for m in result.scalars().all()]

    async def create_many(self, timers: List[SLATimer]) -> List[SLATimer]:
        for timer in timers:
            self._session.add(SLATimerModel(
                **{name: getattr(timer, name) for name in _TIMER_FIELDS}
            ))
        try:
            await self._session.flush()
        except IntegrityError as e:
            # uq_sla_timers_active: one running/paused timer per ticket and type
            raise RepositoryException(
                "Active SLA timer already exists",
                details={"conversation_id": timers[0].conversation_id if timers else None}
            ) from e
        return timers

    async def update(self, timer: SLATimer) -> SLATimer:
        model = await self._session.get(SLATimerModel, timer.id)
        if model is None:
            raise RepositoryException(f"SLA timer {timer.id} not found")

        for name in _TIMER_FIELDS:
            if name != "id":
                setattr(model, name, getattr(timer, name))

        await self._session.flush()
        return timer


class SQLAlchemyBreachRepository(ISLABreachRepository):
    """
    SQLAlchemy implementation of SLA breach repository.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, breach: SLABreach) -> SLABreach:
        self._session.add(SLABreachModel(
            id=breach.id,
            timer_id=breach.timer_id,
            conversation_id=breach.conversation_id,
            breach_type=breach.breach_type,
            target_time=breach.target_time,
            actual_time=breach.actual_time,
            breach_time=breach.breach_time,
            priority=breach.priority,
            status=breach.status,
            assigned_to=breach.assigned_to,
            department=breach.department,
            breached_at=breach.breached_at
        ))
        await self._session.flush()
        return breach

    async def get_by_timer(self, timer_id: str) -> Optional[SLABreach]:
        stmt = select(SLABreachModel).where(SLABreachModel.timer_id == timer_id)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _breach_to_domain(model) if model else None

    async def list(self) -> List[SLABreach]:
        stmt = select(SLABreachModel).order_by(SLABreachModel.breached_at.asc())
        result = await self._session.execute(stmt)
        return [_breach_to_domain(m) for m in result.scalars().all()]


class SQLAlchemyEscalationRepository(ISLAEscalationRepository):
    """
    SQLAlchemy implementation of the escalation log.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, escalation: SLAEscalation) -> SLAEscalation:
        self._session.add(SLAEscalationModel(
            id=escalation.id,
            conversation_id=escalation.conversation_id,
            timer_id=escalation.timer_id,
            escalation_level=escalation.escalation_level,
            escalation_type=escalation.escalation_type,
            reason=escalation.reason,
            escalated_at=escalation.escalated_at
        ))
        await self._session.flush()
        return escalation

    async def list_by_conversation(self, conversation_id: str) -> List[SLAEscalation]:
        stmt = (
            select(SLAEscalationModel)
            .where(SLAEscalationModel.conversation_id == conversation_id)
            .order_by(SLAEscalationModel.escalated_at.asc())
        )
        result = await self._session.execute(stmt)
        return [_escalation_to_domain(m) for m in result.scalars().all()]

    async def list(self) -> List[SLAEscalation]:
        stmt = select(SLAEscalationModel).order_by(SLAEscalationModel.escalated_at.asc())
        result = await self._session.execute(stmt)
        return [_escalation_to_domain(m) for m in result.scalars().all()]


class SQLAlchemyUnitOfWork(IUnitOfWork):
    """
    Commits or rolls back the session shared by the repositories.

    Used by the timer critical sections so a ticket's timer rows are
    committed before its lock passes to another session.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()
