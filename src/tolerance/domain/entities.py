"""
Tolerance Domain Entities
==========================

Pure Python domain entities for tolerance monitoring.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from src.config import BreachType, ReadingTrigger, VarianceStatus
from src.core import AlreadyAcknowledgedException
from src.tolerance.domain.value_objects import ToleranceBand, VarianceResult


@dataclass
class MetricDefinition:
    """
    A monitored risk metric and its tolerance band.

    The band is replaced wholesale on edit; readings already classified
    keep the variance records computed against the old band.
    """

    id: str
    name: str
    tolerance_band: ToleranceBand
    escalation_policy_id: Optional[str] = None
    is_active: bool = True
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class MetricReading:
    """A single measurement. Immutable once recorded."""

    id: str
    metric_id: str
    measurement_date: datetime
    actual_value: float
    recorded_at: datetime


@dataclass(frozen=True)
class VarianceRecord:
    """
    Classification of one reading against one tolerance band.

    Derived, never edited: a band change produces a new record for the
    same reading and the previous one stays for audit.
    """

    id: str
    metric_id: str
    reading_id: str
    measurement_date: datetime
    actual_value: float
    threshold_value: float
    variance_status: VarianceStatus
    variance_percentage: float
    computed_at: datetime
    trigger: ReadingTrigger = ReadingTrigger.INGESTION

    @classmethod
    def from_result(
        cls,
        record_id: str,
        reading: MetricReading,
        result: VarianceResult,
        computed_at: datetime,
        trigger: ReadingTrigger = ReadingTrigger.INGESTION,
    ) -> "VarianceRecord":
        return cls(
            id=record_id,
            metric_id=reading.metric_id,
            reading_id=reading.id,
            measurement_date=reading.measurement_date,
            actual_value=reading.actual_value,
            threshold_value=result.threshold_value,
            variance_status=result.variance_status,
            variance_percentage=result.variance_percentage,
            computed_at=computed_at,
            trigger=trigger,
        )


@dataclass
class BreachNotification:
    """
    Deduplicated record that a reading crossed a warning/breach boundary.

    Identity for deduplication is ``(metric_id, reading_ref, breach_type)``.
    Mutated only by acknowledgment or by the delivery worker.
    """

    id: Optional[str]
    metric_id: str
    reading_ref: str
    breach_type: BreachType
    actual_value: float
    threshold_value: float
    variance_percentage: float
    created_at: datetime

    notification_sent: bool = False
    notification_sent_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None

    @property
    def dedup_key(self) -> tuple[str, str, str]:
        return (self.metric_id, self.reading_ref, BreachType(self.breach_type).value)

    @property
    def is_acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    def acknowledge(self, user_id: str, timestamp: Optional[datetime] = None) -> None:
        """
        Record that a user is aware of the breach.

        Raises:
            AlreadyAcknowledgedException: if acknowledged before
        """
        if self.is_acknowledged:
            raise AlreadyAcknowledgedException("BreachNotification", str(self.id), self.acknowledged_by)
        self.acknowledged_by = user_id
        self.acknowledged_at = timestamp or datetime.now(timezone.utc)

    def mark_notification_sent(self, timestamp: Optional[datetime] = None) -> None:
        """Mark notification as delivered."""
        self.notification_sent = True
        self.notification_sent_at = timestamp or datetime.now(timezone.utc)
