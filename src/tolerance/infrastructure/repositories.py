"""
Tolerance Infrastructure Repositories
======================================

Concrete implementations of the tolerance repository interfaces using
SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import BreachType, ReadingTrigger, VarianceStatus
from src.core import RepositoryException
from src.infrastructure.database import translate_store_errors
from src.tolerance.application import (
    IBreachNotificationRepository,
    IMetricRepository,
    IReadingRepository,
    IVarianceRepository,
)
from src.tolerance.domain import (
    BreachNotification,
    MetricDefinition,
    MetricReading,
    ToleranceBand,
    VarianceRecord,
)
from src.tolerance.infrastructure.models import (
    BreachNotificationModel,
    MetricDefinitionModel,
    MetricReadingModel,
    VarianceRecordModel,
)


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except ValueError:
        return None


class SQLAlchemyMetricRepository(IMetricRepository):
    """SQLAlchemy implementation of metric definition storage."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, metric_id: str) -> Optional[MetricDefinition]:
        async with translate_store_errors("get metric"):
            model = await self._session.get(MetricDefinitionModel, metric_id, populate_existing=True)
        return self._to_domain(model) if model else None

    async def list(self, active_only: bool = True) -> List[MetricDefinition]:
        stmt = select(MetricDefinitionModel)
        if active_only:
            stmt = stmt.where(MetricDefinitionModel.is_active.is_(True))
        stmt = stmt.order_by(MetricDefinitionModel.name.asc())

        async with translate_store_errors("list metrics"):
            result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def save(self, metric: MetricDefinition) -> MetricDefinition:
        band = metric.tolerance_band
        async with translate_store_errors("save metric"):
            model = await self._session.get(MetricDefinitionModel, metric.id)
            if model is None:
                model = MetricDefinitionModel(id=metric.id)
                self._session.add(model)

            model.name = metric.name
            model.appetite_threshold = band.appetite_threshold
            model.warning_percentage = band.warning_percentage
            model.breach_percentage = band.breach_percentage
            model.critical_percentage = band.critical_percentage
            model.escalation_policy_id = metric.escalation_policy_id
            model.is_active = metric.is_active
            model.updated_at = metric.updated_at

            await self._session.flush()
        return metric

    @staticmethod
    def _to_domain(model: MetricDefinitionModel) -> MetricDefinition:
        return MetricDefinition(
            id=model.id,
            name=model.name,
            tolerance_band=ToleranceBand(
                appetite_threshold=model.appetite_threshold,
                warning_percentage=model.warning_percentage,
                breach_percentage=model.breach_percentage,
                critical_percentage=model.critical_percentage,
            ),
            escalation_policy_id=model.escalation_policy_id,
            is_active=model.is_active,
            updated_at=model.updated_at,
        )


class SQLAlchemyReadingRepository(IReadingRepository):
    """SQLAlchemy implementation of metric reading storage."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def find(self, metric_id: str, measurement_date: datetime) -> Optional[MetricReading]:
        stmt = select(MetricReadingModel).where(
            and_(
                MetricReadingModel.metric_id == metric_id,
                MetricReadingModel.measurement_date == measurement_date,
            )
        )
        async with translate_store_errors("find reading"):
            result = await self._session.execute(stmt)
            model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def add(self, reading: MetricReading) -> MetricReading:
        model = MetricReadingModel(
            id=_parse_uuid(reading.id) or uuid4(),
            metric_id=reading.metric_id,
            measurement_date=reading.measurement_date,
            actual_value=reading.actual_value,
            recorded_at=reading.recorded_at,
        )
        async with translate_store_errors("add reading"):
            self._session.add(model)
            await self._session.flush()
        return self._to_domain(model)

    async def latest(self, metric_id: str) -> Optional[MetricReading]:
        stmt = (
            select(MetricReadingModel)
            .where(MetricReadingModel.metric_id == metric_id)
            .order_by(MetricReadingModel.measurement_date.desc(), MetricReadingModel.recorded_at.desc())
            .limit(1)
        )
        async with translate_store_errors("latest reading"):
            result = await self._session.execute(stmt)
            model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    @staticmethod
    def _to_domain(model: MetricReadingModel) -> MetricReading:
        return MetricReading(
            id=str(model.id),
            metric_id=model.metric_id,
            measurement_date=model.measurement_date,
            actual_value=model.actual_value,
            recorded_at=model.recorded_at,
        )


class SQLAlchemyVarianceRepository(IVarianceRepository):
    """SQLAlchemy implementation of variance record storage."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, record: VarianceRecord) -> VarianceRecord:
        reading_uuid = _parse_uuid(record.reading_id)
        if reading_uuid is None:
            raise RepositoryException(f"Invalid reading ID: {record.reading_id}")

        model = VarianceRecordModel(
            id=_parse_uuid(record.id) or uuid4(),
            metric_id=record.metric_id,
            reading_id=reading_uuid,
            measurement_date=record.measurement_date,
            actual_value=record.actual_value,
            threshold_value=record.threshold_value,
            variance_status=VarianceStatus(record.variance_status).value,
            variance_percentage=record.variance_percentage,
            computed_at=record.computed_at,
            trigger=ReadingTrigger(record.trigger).value,
        )
        async with translate_store_errors("add variance record"):
            self._session.add(model)
            await self._session.flush()
        return self._to_domain(model)

    async def latest_for_reading(self, reading_id: str) -> Optional[VarianceRecord]:
        reading_uuid = _parse_uuid(reading_id)
        if reading_uuid is None:
            return None

        stmt = (
            select(VarianceRecordModel)
            .where(VarianceRecordModel.reading_id == reading_uuid)
            .order_by(VarianceRecordModel.computed_at.desc())
            .limit(1)
        )
        async with translate_store_errors("latest variance record"):
            result = await self._session.execute(stmt)
            model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def list_for_metric(self, metric_id: str, limit: int = 100) -> List[VarianceRecord]:
        stmt = (
            select(VarianceRecordModel)
            .where(VarianceRecordModel.metric_id == metric_id)
            .order_by(VarianceRecordModel.computed_at.desc(), VarianceRecordModel.measurement_date.desc())
            .limit(limit)
        )
        async with translate_store_errors("list variance records"):
            result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    @staticmethod
    def _to_domain(model: VarianceRecordModel) -> VarianceRecord:
        return VarianceRecord(
            id=str(model.id),
            metric_id=model.metric_id,
            reading_id=str(model.reading_id),
            measurement_date=model.measurement_date,
            actual_value=model.actual_value,
            threshold_value=model.threshold_value,
            variance_status=VarianceStatus(model.variance_status),
            variance_percentage=model.variance_percentage,
            computed_at=model.computed_at,
            trigger=ReadingTrigger(model.trigger),
        )


class SQLAlchemyBreachNotificationRepository(IBreachNotificationRepository):
    """
    SQLAlchemy implementation of breach notification storage.

    The unique constraint on ``(metric_id, reading_ref, breach_type)``
    makes creation idempotent even when two ingestions of the same
    reading race.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, notification_id: str) -> Optional[BreachNotification]:
        notification_uuid = _parse_uuid(notification_id)
        if notification_uuid is None:
            return None

        async with translate_store_errors("get breach notification"):
            model = await self._session.get(BreachNotificationModel, notification_uuid, populate_existing=True)
        return self._to_domain(model) if model else None

    async def _find_by_key(self, metric_id: str, reading_ref: str, breach_type: BreachType) -> Optional[BreachNotificationModel]:
        stmt = select(BreachNotificationModel).where(
            and_(
                BreachNotificationModel.metric_id == metric_id,
                BreachNotificationModel.reading_ref == reading_ref,
                BreachNotificationModel.breach_type == BreachType(breach_type).value,
            )
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_if_absent(self, notification: BreachNotification) -> tuple[BreachNotification, bool]:
        metric_id, reading_ref, breach_type = notification.dedup_key

        async with translate_store_errors("create breach notification"):
            existing = await self._find_by_key(metric_id, reading_ref, breach_type)
            if existing is not None:
                return self._to_domain(existing), False

            model = BreachNotificationModel(id=_parse_uuid(notification.id) or uuid4())
            self._apply(model, notification)
            try:
                async with self._session.begin_nested():
                    self._session.add(model)
                    await self._session.flush()
            except IntegrityError:
                winner = await self._find_by_key(metric_id, reading_ref, breach_type)
                if winner is None:
                    raise
                return self._to_domain(winner), False

        notification.id = str(model.id)
        return notification, True

    async def save(self, notification: BreachNotification) -> BreachNotification:
        notification_uuid = _parse_uuid(notification.id)
        async with translate_store_errors("save breach notification"):
            model = await self._session.get(BreachNotificationModel, notification_uuid) if notification_uuid else None
            if model is None:
                raise RepositoryException(f"Breach notification {notification.id} not found")

            model.notification_sent = notification.notification_sent
            model.notification_sent_at = notification.notification_sent_at
            model.acknowledged_by = notification.acknowledged_by
            model.acknowledged_at = notification.acknowledged_at
            await self._session.flush()
        return notification

    async def list(
        self,
        metric_id: Optional[str] = None,
        unacknowledged_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[BreachNotification]:
        conditions = []
        if metric_id is not None:
            conditions.append(BreachNotificationModel.metric_id == metric_id)
        if unacknowledged_only:
            conditions.append(BreachNotificationModel.acknowledged_at.is_(None))

        stmt = select(BreachNotificationModel)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(BreachNotificationModel.created_at.desc()).limit(limit).offset(offset)

        async with translate_store_errors("list breach notifications"):
            result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def list_unsent(self, limit: int = 100) -> List[BreachNotification]:
        stmt = (
            select(BreachNotificationModel)
            .where(BreachNotificationModel.notification_sent.is_(False))
            .order_by(BreachNotificationModel.created_at.asc())
            .limit(limit)
        )
        async with translate_store_errors("list unsent breach notifications"):
            result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    @staticmethod
    def _apply(model: BreachNotificationModel, notification: BreachNotification) -> None:
        model.metric_id = notification.metric_id
        model.reading_ref = notification.reading_ref
        model.breach_type = BreachType(notification.breach_type).value
        model.actual_value = notification.actual_value
        model.threshold_value = notification.threshold_value
        model.variance_percentage = notification.variance_percentage
        model.created_at = notification.created_at
        model.notification_sent = notification.notification_sent
        model.notification_sent_at = notification.notification_sent_at
        model.acknowledged_by = notification.acknowledged_by
        model.acknowledged_at = notification.acknowledged_at

    @staticmethod
    def _to_domain(model: BreachNotificationModel) -> BreachNotification:
        return BreachNotification(
            id=str(model.id),
            metric_id=model.metric_id,
            reading_ref=model.reading_ref,
            breach_type=BreachType(model.breach_type),
            actual_value=model.actual_value,
            threshold_value=model.threshold_value,
            variance_percentage=model.variance_percentage,
            created_at=model.created_at,
            notification_sent=model.notification_sent,
            notification_sent_at=model.notification_sent_at,
            acknowledged_by=model.acknowledged_by,
            acknowledged_at=model.acknowledged_at,
        )
