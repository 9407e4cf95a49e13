"""
Tolerance Infrastructure Models
================================

SQLAlchemy ORM models for the tolerance monitoring module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Float, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.config import BreachType, ReadingTrigger, VarianceStatus
from src.infrastructure.database import Base, UTCDateTime


class MetricDefinitionModel(Base):
    """
    Database model for MetricDefinition.

    Maps to the 'metric_definitions' table. The tolerance band is stored
    inline; its history lives in the variance records computed against it.
    """
    __tablename__ = "metric_definitions"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Tolerance band
    appetite_threshold: Mapped[float] = mapped_column(Float, nullable=False)
    warning_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    breach_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    critical_percentage: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    escalation_policy_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


class MetricReadingModel(Base):
    """
    Database model for MetricReading.

    Maps to the 'metric_readings' table. One reading per metric per
    measurement date.
    """
    __tablename__ = "metric_readings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    metric_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    measurement_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    actual_value: Mapped[float] = mapped_column(Float, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("metric_id", "measurement_date", name="uq_metric_readings_metric_date"),
    )


class VarianceRecordModel(Base):
    """
    Database model for VarianceRecord.

    Maps to the 'variance_records' table. Append-only.
    """
    __tablename__ = "variance_records"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    metric_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    reading_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    measurement_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    actual_value: Mapped[float] = mapped_column(Float, nullable=False)
    threshold_value: Mapped[float] = mapped_column(Float, nullable=False)
    variance_status: Mapped[VarianceStatus] = mapped_column(String(50), nullable=False)
    variance_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    trigger: Mapped[ReadingTrigger] = mapped_column(String(50), nullable=False, default=ReadingTrigger.INGESTION)


class BreachNotificationModel(Base):
    """
    Database model for BreachNotification.

    Maps to the 'breach_notifications' table.
    """
    __tablename__ = "breach_notifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    metric_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    reading_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    breach_type: Mapped[BreachType] = mapped_column(String(50), nullable=False)

    actual_value: Mapped[float] = mapped_column(Float, nullable=False)
    threshold_value: Mapped[float] = mapped_column(Float, nullable=False)
    variance_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    # Notification tracking
    notification_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notification_sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Acknowledgment
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # One notification per (metric, reading, breach type)
    __table_args__ = (
        UniqueConstraint("metric_id", "reading_ref", "breach_type", name="uq_breach_notifications_dedup"),
    )
