"""
Tolerance Application Services
===============================

Application services for metric ingestion, variance classification and
breach notification lifecycle.

Orchestrates business logic between domain entities and repositories.
Breaches that warrant escalation are handed to the escalation engine.
"""

import asyncio
import weakref
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, List, Optional
from uuid import uuid4

from src.config import BreachType, ReadingTrigger, VarianceStatus
from src.core import (
    ConfigurationException,
    DeliveryException,
    ResourceNotFoundException,
    ValidationException,
)
from src.escalation.application import (
    EscalationEngine,
    IEscalationConfigProvider,
    INotificationSender,
    utc_now,
)
from src.escalation.domain import AlertEvent, EscalationExecution
from src.shared.infrastructure.logging import get_context_logger, get_logger
from src.tolerance.domain import (
    BreachNotification,
    MetricDefinition,
    MetricReading,
    ToleranceBand,
    VarianceCalculator,
    VarianceRecord,
)

logger = get_logger(__name__)


# ========== Repository Interfaces ==========

class IMetricRepository(ABC):
    """Interface for metric definition storage."""

    @abstractmethod
    async def get(self, metric_id: str) -> Optional[MetricDefinition]:
        """Get metric by id."""

    @abstractmethod
    async def list(self, active_only: bool = True) -> List[MetricDefinition]:
        """List metrics ordered by name."""

    @abstractmethod
    async def save(self, metric: MetricDefinition) -> MetricDefinition:
        """Insert or replace a metric definition."""


class IReadingRepository(ABC):
    """Interface for metric reading storage. Readings are append-only."""

    @abstractmethod
    async def find(self, metric_id: str, measurement_date: datetime) -> Optional[MetricReading]:
        """The reading recorded for a metric at a measurement date, if any."""

    @abstractmethod
    async def add(self, reading: MetricReading) -> MetricReading:
        """Store a new reading."""

    @abstractmethod
    async def latest(self, metric_id: str) -> Optional[MetricReading]:
        """The reading with the most recent measurement date."""


class IVarianceRepository(ABC):
    """Interface for variance record storage. Records are never updated."""

    @abstractmethod
    async def add(self, record: VarianceRecord) -> VarianceRecord:
        """Append a variance record."""

    @abstractmethod
    async def latest_for_reading(self, reading_id: str) -> Optional[VarianceRecord]:
        """Most recently computed record for a reading."""

    @abstractmethod
    async def list_for_metric(self, metric_id: str, limit: int = 100) -> List[VarianceRecord]:
        """History for a metric, newest computation first."""


class IBreachNotificationRepository(ABC):
    """Interface for breach notification storage."""

    @abstractmethod
    async def get(self, notification_id: str) -> Optional[BreachNotification]:
        """Get notification by id."""

    @abstractmethod
    async def create_if_absent(self, notification: BreachNotification) -> tuple[BreachNotification, bool]:
        """
        Insert unless a notification with the same dedup key exists.

        Returns the stored notification and whether it was created by this call.
        """

    @abstractmethod
    async def save(self, notification: BreachNotification) -> BreachNotification:
        """Persist acknowledgment / delivery state."""

    @abstractmethod
    async def list(
        self,
        metric_id: Optional[str] = None,
        unacknowledged_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[BreachNotification]:
        """List notifications, newest first."""

    @abstractmethod
    async def list_unsent(self, limit: int = 100) -> List[BreachNotification]:
        """Notifications not yet delivered, oldest first."""


# ========== Per-metric ordering ==========

class MetricLockRegistry:
    """
    One asyncio.Lock per metric id.

    Readings and band edits for the same metric are applied one at a time
    in arrival order; different metrics never wait on each other. A lock
    lives only while some caller holds or waits on it.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, metric_id: str) -> asyncio.Lock:
        lock = self._locks.get(metric_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[metric_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


Commit = Callable[[], Awaitable[None]]


async def _no_commit() -> None:
    return None


# ========== Results ==========

@dataclass
class IngestResult:
    reading: MetricReading
    variance_record: VarianceRecord
    notification: Optional[BreachNotification] = None
    notification_created: bool = False
    escalation: Optional[EscalationExecution] = None
    escalation_created: bool = False
    duplicate_reading: bool = False


@dataclass
class DeliverySummary:
    attempted: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


# ========== Notification content ==========

def render_breach_message(notification: BreachNotification, metric_name: str) -> tuple[str, str]:
    """Subject and body for a breach notification."""
    severity = BreachType(notification.breach_type).value.upper()
    subject = f"[{severity}] Tolerance breach: {metric_name}"
    body = "\n".join([
        f"Metric: {metric_name}",
        f"Severity: {severity}",
        f"Reading: {notification.reading_ref}",
        f"Actual value: {notification.actual_value}",
        f"Threshold value: {notification.threshold_value}",
        f"Variance: {notification.variance_percentage * 100:.1f}%",
        f"Detected at: {notification.created_at.isoformat()}",
    ])
    return subject, body


# ========== Application Services ==========

class BreachNotificationService:
    """
    Breach notification lifecycle: deduplicated creation, acknowledgment
    and delivery.
    """

    def __init__(
        self,
        notification_repository: IBreachNotificationRepository,
        metric_repository: Optional[IMetricRepository] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._notification_repo = notification_repository
        self._metric_repo = metric_repository
        self._clock = clock or utc_now

    async def register_variance(
        self,
        record: VarianceRecord,
        band: ToleranceBand,
    ) -> tuple[Optional[BreachNotification], bool]:
        """
        Create a breach notification for a classified reading if warranted.

        Readings within appetite never create one and never clear an
        existing one; replays of the same reading return the notification
        already stored for its ``(metric, reading, breach type)``.
        """
        breach_type = VarianceCalculator.breach_type_for(
            record.variance_status, record.variance_percentage, band
        )
        if breach_type is None:
            return None, False

        notification = BreachNotification(
            id=str(uuid4()),
            metric_id=record.metric_id,
            reading_ref=record.reading_id,
            breach_type=breach_type,
            actual_value=record.actual_value,
            threshold_value=record.threshold_value,
            variance_percentage=record.variance_percentage,
            created_at=self._clock(),
        )
        stored, created = await self._notification_repo.create_if_absent(notification)

        if created:
            logger.info(
                "Breach notification created",
                extra={
                    "notification_id": stored.id,
                    "metric_id": stored.metric_id,
                    "reading_ref": stored.reading_ref,
                    "breach_type": breach_type.value,
                    "variance_percentage": round(stored.variance_percentage, 4),
                }
            )
        return stored, created

    async def get_notification(self, notification_id: str) -> BreachNotification:
        notification = await self._notification_repo.get(notification_id)
        if notification is None:
            raise ResourceNotFoundException("BreachNotification", notification_id)
        return notification

    async def acknowledge(self, notification_id: str, user_id: str) -> BreachNotification:
        """
        Record awareness of a breach.

        Does not resolve any escalation started for the same breach.

        Raises:
            ResourceNotFoundException: unknown notification id
            AlreadyAcknowledgedException: acknowledged before
        """
        notification = await self.get_notification(notification_id)
        notification.acknowledge(user_id, self._clock())
        saved = await self._notification_repo.save(notification)

        logger.info(
            "Breach notification acknowledged",
            extra={"notification_id": notification_id, "acknowledged_by": user_id}
        )
        return saved

    async def list_notifications(
        self,
        metric_id: Optional[str] = None,
        unacknowledged_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[BreachNotification]:
        return await self._notification_repo.list(
            metric_id=metric_id,
            unacknowledged_only=unacknowledged_only,
            limit=limit,
            offset=offset,
        )

    async def dispatch_pending(
        self,
        sender: INotificationSender,
        recipients: List[str],
        limit: int = 100,
    ) -> DeliverySummary:
        """
        Deliver unsent notifications and mark each one sent on success.

        A failed send leaves the notification unsent for the next run.
        """
        summary = DeliverySummary()
        pending = await self._notification_repo.list_unsent(limit=limit)
        if not pending:
            return summary

        if not recipients:
            summary.skipped = len(pending)
            logger.warning("No breach notification recipients configured", extra={"pending": len(pending)})
            return summary

        for notification in pending:
            summary.attempted += 1
            metric_name = notification.metric_id
            if self._metric_repo is not None:
                metric = await self._metric_repo.get(notification.metric_id)
                if metric is not None:
                    metric_name = metric.name
            subject, body = render_breach_message(notification, metric_name)

            try:
                delivered = await sender.send(recipients, subject, body)
            except DeliveryException as e:
                logger.error(
                    "Breach notification delivery failed",
                    extra={"notification_id": notification.id, "error": e.message}
                )
                delivered = False

            if not delivered:
                summary.failed += 1
                continue

            notification.mark_notification_sent(self._clock())
            await self._notification_repo.save(notification)
            summary.sent += 1

        logger.info(
            "Breach notification delivery complete",
            extra={"attempted": summary.attempted, "sent": summary.sent, "failed": summary.failed}
        )
        return summary


class ToleranceService:
    """
    Metric definitions, reading ingestion and tolerance band edits.

    Every classification for one metric happens under that metric's lock
    and is committed before the lock is released, so a later reading is
    never classified against a band older than the one an earlier call
    saw.
    """

    def __init__(
        self,
        metric_repository: IMetricRepository,
        reading_repository: IReadingRepository,
        variance_repository: IVarianceRepository,
        notification_service: BreachNotificationService,
        escalation_engine: Optional[EscalationEngine] = None,
        config_provider: Optional[IEscalationConfigProvider] = None,
        locks: Optional[MetricLockRegistry] = None,
        commit: Optional[Commit] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._metric_repo = metric_repository
        self._reading_repo = reading_repository
        self._variance_repo = variance_repository
        self._notifications = notification_service
        self._engine = escalation_engine
        self._config_provider = config_provider
        self._locks = locks or MetricLockRegistry()
        self._commit = commit or _no_commit
        self._clock = clock or utc_now

    # ========== Metric definitions ==========

    async def get_metric(self, metric_id: str) -> MetricDefinition:
        """
        Raises:
            ResourceNotFoundException: unknown metric id
        """
        metric = await self._metric_repo.get(metric_id)
        if metric is None:
            raise ResourceNotFoundException("Metric", metric_id)
        return metric

    async def list_metrics(self, active_only: bool = True) -> List[MetricDefinition]:
        return await self._metric_repo.list(active_only=active_only)

    async def define_metric(self, metric: MetricDefinition) -> MetricDefinition:
        """Register a new metric; the band was validated when it was built."""
        if await self._metric_repo.get(metric.id) is not None:
            raise ConfigurationException(f"metric '{metric.id}' already exists")
        metric.updated_at = self._clock()
        saved = await self._metric_repo.save(metric)
        logger.info(
            "Metric defined",
            extra={"metric_id": metric.id, "tolerance_band": metric.tolerance_band.to_dict()}
        )
        return saved

    # ========== Ingestion ==========

    async def ingest_reading(
        self,
        metric_id: str,
        actual_value: float,
        measurement_date: datetime,
    ) -> IngestResult:
        """
        Record and classify a reading.

        Re-ingesting a reading already recorded for the same measurement
        date returns its latest classification and creates nothing new.

        Raises:
            ResourceNotFoundException: unknown metric
            ConfigurationException: value not a finite number
            ValidationException: a different value was already recorded
                for the measurement date
        """
        async with self._locks.lock_for(metric_id):
            metric = await self.get_metric(metric_id)
            now = self._clock()

            existing = await self._reading_repo.find(metric_id, measurement_date)
            if existing is not None:
                if existing.actual_value != actual_value:
                    raise ValidationException(
                        "a different value is already recorded for this measurement date",
                        {
                            "metric_id": metric_id,
                            "measurement_date": measurement_date.isoformat(),
                            "recorded_value": existing.actual_value,
                        }
                    )
                record = await self._variance_repo.latest_for_reading(existing.id)
                if record is not None:
                    result = await self._register(metric, existing, record)
                    result.duplicate_reading = True
                    await self._commit()
                    self._notify_escalation(result)
                    return result
                reading = existing
            else:
                reading = MetricReading(
                    id=str(uuid4()),
                    metric_id=metric_id,
                    measurement_date=measurement_date,
                    actual_value=actual_value,
                    recorded_at=now,
                )
                # Rejects non-finite values before anything is stored
                VarianceCalculator.classify(actual_value, metric.tolerance_band)
                reading = await self._reading_repo.add(reading)

            result = await self._classify(metric, reading, ReadingTrigger.INGESTION)
            await self._commit()
            self._notify_escalation(result)
            return result

    async def update_tolerance_band(self, metric_id: str, band: ToleranceBand) -> Optional[IngestResult]:
        """
        Replace a metric's band and re-classify its most recent reading.

        Older readings keep their records. Returns the re-classification,
        or None when the metric has no readings yet.
        """
        async with self._locks.lock_for(metric_id):
            metric = await self.get_metric(metric_id)
            previous = metric.tolerance_band
            metric.tolerance_band = band
            metric.updated_at = self._clock()
            await self._metric_repo.save(metric)

            logger.info(
                "Tolerance band updated",
                extra={"metric_id": metric_id, "previous": previous.to_dict(), "current": band.to_dict()}
            )

            result = None
            latest = await self._reading_repo.latest(metric_id)
            if latest is not None:
                result = await self._classify(metric, latest, ReadingTrigger.BAND_CHANGE)

            await self._commit()
            if result is not None:
                self._notify_escalation(result)
            return result

    async def get_variance_history(self, metric_id: str, limit: int = 100) -> List[VarianceRecord]:
        await self.get_metric(metric_id)
        return await self._variance_repo.list_for_metric(metric_id, limit=limit)

    # ========== Internals ==========

    async def _classify(
        self,
        metric: MetricDefinition,
        reading: MetricReading,
        trigger: ReadingTrigger,
    ) -> IngestResult:
        now = self._clock()
        classification = VarianceCalculator.classify(reading.actual_value, metric.tolerance_band)
        record = await self._variance_repo.add(
            VarianceRecord.from_result(str(uuid4()), reading, classification, now, trigger)
        )

        log = get_context_logger(__name__, metric_id=metric.id, reading_id=reading.id)
        log.info(
            "Reading classified",
            extra={
                "variance_status": VarianceStatus(record.variance_status).value,
                "variance_percentage": round(record.variance_percentage, 4),
                "trigger": ReadingTrigger(trigger).value,
            }
        )

        return await self._register(metric, reading, record)

    async def _register(
        self,
        metric: MetricDefinition,
        reading: MetricReading,
        record: VarianceRecord,
    ) -> IngestResult:
        notification, created = await self._notifications.register_variance(record, metric.tolerance_band)
        result = IngestResult(
            reading=reading,
            variance_record=record,
            notification=notification,
            notification_created=created,
        )

        if created:
            start = await self._escalate(metric, notification)
            if start is not None:
                result.escalation, result.escalation_created = start
        return result

    def _policy_for(self, metric: MetricDefinition, breach_type: BreachType) -> Optional[str]:
        policy_id = None
        if self._config_provider is not None:
            policy_id = self._config_provider.get_config().policy_for_breach(breach_type)
        if breach_type != BreachType.WARNING and metric.escalation_policy_id:
            policy_id = metric.escalation_policy_id
        return policy_id

    async def _escalate(
        self,
        metric: MetricDefinition,
        notification: BreachNotification,
    ) -> Optional[tuple[EscalationExecution, bool]]:
        if self._engine is None:
            return None

        breach_type = BreachType(notification.breach_type)
        policy_id = self._policy_for(metric, breach_type)
        if policy_id is None:
            return None

        alert = AlertEvent.for_metric(
            metric.id,
            title=f"{metric.name} {breach_type.value}",
            reason=(
                f"{metric.name} at {notification.actual_value} is "
                f"{notification.variance_percentage * 100:+.1f}% from threshold {notification.threshold_value}"
            ),
            notification_id=notification.id,
            breach_type=breach_type.value,
        )
        try:
            start = await self._engine.start_escalation(alert, policy_id, notify=False)
        except ResourceNotFoundException as e:
            # The breach is recorded either way; a missing policy is a setup problem
            logger.error(
                "Escalation policy unavailable for breach",
                extra={"metric_id": metric.id, "policy_id": policy_id, "error": e.message}
            )
            return None
        return start.execution, start.created

    def _notify_escalation(self, result: IngestResult) -> None:
        """Contact the first level of an escalation this call started, once committed."""
        if result.escalation_created and self._engine is not None:
            self._engine.notify_started(result.escalation)
