"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="slaflow", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Configuration ==========
    sla_policies_path: Path = Field(
        default=Path("sla_policies.yaml"),
        description="Path to the SLA policy seed YAML file"
    )
    sla_monitor_interval: int = Field(
        default=120,
        description="Seconds between SLA monitor sweeps",
        ge=10
    )
    sla_time_trigger_interval: int = Field(
        default=300,
        description="Seconds between time_scheduler workflow runs",
        ge=10
    )
    default_escalation_level1: int = Field(
        default=80,
        description="Default level-1 escalation threshold (percent elapsed)",
        ge=1,
        le=100
    )
    default_escalation_level2: int = Field(
        default=95,
        description="Default level-2 escalation threshold (percent elapsed)",
        ge=1,
        le=100
    )

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook URL receiving SLA and workflow notifications"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification webhook calls",
        ge=0.1,
        le=30
    )
    notification_max_retries: int = Field(
        default=3,
        description="Delivery attempts per notification",
        ge=1,
        le=10
    )

    # ========== Workflows ==========
    workflow_max_concurrency: int = Field(
        default=10,
        description="Max workflow executions running at once",
        ge=1
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"invalid log level: {v}")
        return level


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str):
    """Ticket priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TimerType(str):
    """Types of SLA timers."""
    RESPONSE = "response"
    RESOLUTION = "resolution"


class TimerStatus(str):
    """SLA timer lifecycle states."""
    RUNNING = "running"
    PAUSED = "paused"
    BREACHED = "breached"
    STOPPED = "stopped"


class TicketStatus(str):
    """Ticket statuses the SLA engine reacts to."""
    OPEN = "open"
    PENDING = "pending"
    WAITING = "waiting"
    ON_HOLD = "on_hold"
    RESOLVED = "resolved"
    CLOSED = "closed"


class EscalationType(str):
    """Escalation log entry types."""
    WARNING = "sla_warning"
    CRITICAL = "sla_critical"
    BREACH = "sla_breach"
    WORKFLOW = "workflow"


class NotificationType(str):
    """Notification categories emitted by the engine."""
    SLA_RISK = "sla_risk"
    SLA_BREACH = "sla_breach"
    SLA_WARNING = "sla_warning"
    ESCALATION = "escalation"
    EMAIL = "send_email"
    SMS = "send_sms"
    IN_APP = "send_notification"


OFF_HOURS_PAUSE_REASON = "Outside business hours"


# ========== Lists for validation ==========

VALID_PRIORITIES = [
    Priority.LOW, Priority.MEDIUM,
    Priority.HIGH, Priority.URGENT
]
VALID_TIMER_TYPES = [TimerType.RESPONSE, TimerType.RESOLUTION]
VALID_TIMER_STATUSES = [
    TimerStatus.RUNNING, TimerStatus.PAUSED,
    TimerStatus.BREACHED, TimerStatus.STOPPED
]
ACTIVE_TIMER_STATUSES = [TimerStatus.RUNNING, TimerStatus.PAUSED]
CLOSED_TICKET_STATUSES = [TicketStatus.RESOLVED, TicketStatus.CLOSED]
