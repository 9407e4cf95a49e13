"""
Tolerance Application DTOs
===========================

Data Transfer Objects for the tolerance monitoring API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from src.tolerance.domain import (
    BreachNotification,
    MetricDefinition,
    ToleranceBand,
    VarianceRecord,
)


# ========== Type Aliases for Literals ==========
VarianceStatusStr = Literal["within_appetite", "warning", "breach"]
BreachTypeStr = Literal["warning", "breach", "critical"]
ReadingTriggerStr = Literal["ingestion", "band_change"]


# ========== Request DTOs ==========

class ToleranceBandDTO(BaseModel):
    """Tolerance band; percentages are fractions of the threshold."""
    appetite_threshold: float = Field(..., description="Threshold the variance is measured against")
    warning_percentage: float = Field(..., description="Warning starts at this |variance|, e.g. 0.10")
    breach_percentage: float = Field(..., description="Breach starts at this |variance|, e.g. 0.25")
    critical_percentage: Optional[float] = Field(
        None, description="Breaches at or beyond this |variance| are critical"
    )

    def to_domain(self) -> ToleranceBand:
        return ToleranceBand(
            appetite_threshold=self.appetite_threshold,
            warning_percentage=self.warning_percentage,
            breach_percentage=self.breach_percentage,
            critical_percentage=self.critical_percentage,
        )


class MetricCreateRequest(BaseModel):
    """Request model for defining a monitored metric."""
    id: str = Field(..., min_length=1, max_length=100, description="Metric id")
    name: str = Field(..., min_length=1, description="Display name")
    tolerance_band: ToleranceBandDTO
    escalation_policy_id: Optional[str] = Field(
        None, description="Policy for breach/critical notifications; overrides config routing"
    )
    is_active: bool = True

    def to_domain(self) -> MetricDefinition:
        return MetricDefinition(
            id=self.id,
            name=self.name,
            tolerance_band=self.tolerance_band.to_domain(),
            escalation_policy_id=self.escalation_policy_id,
            is_active=self.is_active,
        )


class ReadingIngestRequest(BaseModel):
    """Request model for a single metric reading."""
    actual_value: float = Field(..., description="Measured value")
    measurement_date: datetime = Field(..., description="When the value was measured")

    @field_validator("measurement_date")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class NotificationAcknowledgeRequest(BaseModel):
    user_id: str = Field(..., min_length=1, description="User acknowledging the breach")


# ========== Response DTOs ==========

class MetricResponse(BaseModel):
    id: str
    name: str
    tolerance_band: ToleranceBandDTO
    escalation_policy_id: Optional[str]
    is_active: bool
    updated_at: datetime

    @classmethod
    def from_domain(cls, metric: MetricDefinition) -> "MetricResponse":
        return cls(
            id=metric.id,
            name=metric.name,
            tolerance_band=ToleranceBandDTO(**metric.tolerance_band.to_dict()),
            escalation_policy_id=metric.escalation_policy_id,
            is_active=metric.is_active,
            updated_at=metric.updated_at,
        )


class VarianceRecordResponse(BaseModel):
    id: str
    metric_id: str
    reading_id: str
    measurement_date: datetime
    actual_value: float
    threshold_value: float
    variance_status: VarianceStatusStr
    variance_percentage: float = Field(..., description="Signed; positive means over threshold")
    computed_at: datetime
    trigger: ReadingTriggerStr

    @classmethod
    def from_domain(cls, record: VarianceRecord) -> "VarianceRecordResponse":
        return cls(
            id=record.id,
            metric_id=record.metric_id,
            reading_id=record.reading_id,
            measurement_date=record.measurement_date,
            actual_value=record.actual_value,
            threshold_value=record.threshold_value,
            variance_status=record.variance_status,
            variance_percentage=record.variance_percentage,
            computed_at=record.computed_at,
            trigger=record.trigger,
        )


class BreachNotificationResponse(BaseModel):
    id: str
    metric_id: str
    reading_ref: str
    breach_type: BreachTypeStr
    actual_value: float
    threshold_value: float
    variance_percentage: float
    created_at: datetime
    notification_sent: bool
    notification_sent_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, notification: BreachNotification) -> "BreachNotificationResponse":
        return cls(
            id=notification.id,
            metric_id=notification.metric_id,
            reading_ref=notification.reading_ref,
            breach_type=notification.breach_type,
            actual_value=notification.actual_value,
            threshold_value=notification.threshold_value,
            variance_percentage=notification.variance_percentage,
            created_at=notification.created_at,
            notification_sent=notification.notification_sent,
            notification_sent_at=notification.notification_sent_at,
            acknowledged_by=notification.acknowledged_by,
            acknowledged_at=notification.acknowledged_at,
        )


class IngestResponse(BaseModel):
    """Outcome of ingesting (or re-classifying) one reading."""
    reading_id: str
    duplicate_reading: bool = Field(False, description="Reading was already recorded; nothing new created")
    variance: VarianceRecordResponse
    notification: Optional[BreachNotificationResponse] = None
    notification_created: bool = False
    escalation_id: Optional[str] = None
    escalation_created: bool = False


class NotificationListResponse(BaseModel):
    notifications: List[BreachNotificationResponse]
    total_count: int


class DeliveryResponse(BaseModel):
    attempted: int
    sent: int
    failed: int
    skipped: int
