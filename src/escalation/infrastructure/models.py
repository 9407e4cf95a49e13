"""
Escalation Infrastructure Models
=================================

SQLAlchemy ORM models for the escalation module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from src.config import AlertSource, ExecutionStatus
from src.infrastructure.database import Base, UTCDateTime


class EscalationPolicyModel(Base):
    """
    Database model for EscalationPolicy.

    Maps to the 'escalation_policies' table. Levels are stored as a JSON
    list of ``{level, delay_minutes, recipients}``.
    """
    __tablename__ = "escalation_policies"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    policy_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    levels: Mapped[list] = mapped_column(JSON, nullable=False)
    repeat_interval_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


class EscalationExecutionModel(Base):
    """
    Database model for EscalationExecution.

    Maps to the 'escalation_executions' table. ``next_due_at`` is
    recomputed on every write so due executions are found with one
    indexed range query.
    """
    __tablename__ = "escalation_executions"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Alert identity
    alert_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    alert_title: Mapped[str] = mapped_column(String(500), nullable=False)
    alert_source: Mapped[AlertSource] = mapped_column(String(50), nullable=False)

    # Policy, frozen at start
    policy_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    policy_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)

    # State machine
    status: Mapped[ExecutionStatus] = mapped_column(String(50), nullable=False, default=ExecutionStatus.ACTIVE)
    current_level: Mapped[int] = mapped_column(Integer, nullable=False)
    escalation_reason: Mapped[str] = mapped_column(Text, nullable=False)
    notification_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Timing
    escalated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    last_level_notified_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    next_due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Ownership
    assigned_to: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    execution_log: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # At most one active execution per alert
    __table_args__ = (
        Index(
            "uq_escalation_executions_active_alert",
            "alert_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )
