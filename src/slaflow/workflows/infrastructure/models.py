"""
Workflow Infrastructure Models
===============================

SQLAlchemy ORM model for workflow definitions.

The graph is stored as JSON text in `workflow_data` so it round-trips
with the editor's export format.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, DateTime, Boolean, Text
from sqlalchemy.orm import Mapped, mapped_column

from slaflow.infrastructure.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowModel(Base):
    """
    Database model for Workflow entity.

    Maps to the 'workflows' table.
    """
    __tablename__ = "workflows"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    is_draft: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    policy_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    workflow_data: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
