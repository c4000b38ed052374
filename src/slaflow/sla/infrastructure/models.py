"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, DateTime, Boolean, Integer, Text, JSON, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from slaflow.infrastructure.database import Base
from slaflow.config import TimerStatus


_ACTIVE_STATUS_CLAUSE = f"status IN ('{TimerStatus.RUNNING}', '{TimerStatus.PAUSED}')"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SLAPolicyModel(Base):
    """
    Database model for SLAPolicy entity.

    Maps to the 'sla_policies' table.
    """
    __tablename__ = "sla_policies"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Targets in minutes
    low_response_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    low_resolution_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    medium_response_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    medium_resolution_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    high_response_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    high_resolution_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    urgent_response_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    urgent_resolution_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Business hours
    use_business_hours: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    business_hours: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    holidays: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Escalation thresholds
    escalation_level1: Mapped[int] = mapped_column(Integer, nullable=False, default=80)
    escalation_level2: Mapped[int] = mapped_column(Integer, nullable=False, default=95)

    # Pause rules
    pause_on_waiting: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    pause_on_hold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    pause_off_hours: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Scope filters
    department_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    category_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class SLATimerModel(Base):
    """
    Database model for SLATimer entity.

    Maps to the 'sla_timers' table.
    """
    __tablename__ = "sla_timers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    conversation_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    policy_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    timer_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TimerStatus.RUNNING, index=True)

    target_time: Mapped[int] = mapped_column(Integer, nullable=False)
    remaining_time: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    elapsed_time: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_paused_time: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    initial_priority: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    pause_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    resumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    breached_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Escalation de-duplication
    level1_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    level2_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_sla_timers_conversation_status", "conversation_id", "status"),
        # At most one active timer per ticket and timer type
        Index(
            "uq_sla_timers_active",
            "conversation_id", "timer_type",
            unique=True,
            postgresql_where=text(_ACTIVE_STATUS_CLAUSE),
            sqlite_where=text(_ACTIVE_STATUS_CLAUSE),
        ),
    )


class SLABreachModel(Base):
    """
    Database model for SLABreach entity.

    Maps to the 'sla_breaches' table. One row per timer.
    """
    __tablename__ = "sla_breaches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    timer_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    conversation_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    breach_type: Mapped[str] = mapped_column(String(50), nullable=False)

    target_time: Mapped[int] = mapped_column(Integer, nullable=False)
    actual_time: Mapped[int] = mapped_column(Integer, nullable=False)
    breach_time: Mapped[int] = mapped_column(Integer, nullable=False)

    # Ticket snapshot at breach time
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="unknown")
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="unknown")
    assigned_to: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    department: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    breached_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class SLAEscalationModel(Base):
    """
    Database model for SLAEscalation entity.

    Maps to the 'sla_escalations' table. Append-only.
    """
    __tablename__ = "sla_escalations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    conversation_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    timer_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False)
    escalation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    escalated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
