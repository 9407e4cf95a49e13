"""
Tolerance Controllers (API Routes)
===================================

FastAPI routes for metric definitions, reading ingestion, tolerance band
edits and breach notifications.

Controllers are thin - they delegate to application services.
"""

import time
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.escalation.application import EscalationEngine, IEscalationConfigProvider
from src.escalation.interfaces.dependencies import get_config_provider, get_escalation_engine
from src.infrastructure.database import get_session
from src.shared.infrastructure.logging import get_logger
from src.tolerance.application import (
    BreachNotificationResponse,
    BreachNotificationService,
    DeliveryResponse,
    IngestResponse,
    IngestResult,
    MetricCreateRequest,
    MetricLockRegistry,
    MetricResponse,
    NotificationAcknowledgeRequest,
    NotificationListResponse,
    ReadingIngestRequest,
    ToleranceBandDTO,
    ToleranceService,
    VarianceRecordResponse,
)
from src.tolerance.infrastructure import (
    SQLAlchemyBreachNotificationRepository,
    SQLAlchemyMetricRepository,
    SQLAlchemyReadingRepository,
    SQLAlchemyVarianceRepository,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/tolerance", tags=["Tolerance Monitoring"])


# ========== Example payloads for Swagger ==========

INGEST_RESPONSE_EXAMPLE = {
    "reading_id": "123e4567-e89b-12d3-a456-426614174000",
    "duplicate_reading": False,
    "variance": {
        "id": "0f8fad5b-d9cb-469f-a165-70867728950e",
        "metric_id": "kri-operational-losses",
        "reading_id": "123e4567-e89b-12d3-a456-426614174000",
        "measurement_date": "2024-01-15T00:00:00Z",
        "actual_value": 130.0,
        "threshold_value": 100.0,
        "variance_status": "breach",
        "variance_percentage": 0.3,
        "computed_at": "2024-01-15T10:00:00Z",
        "trigger": "ingestion"
    },
    "notification_created": True,
    "escalation_created": True
}


# ========== Dependencies ==========

def get_metric_locks(request: Request) -> MetricLockRegistry:
    return request.app.state.metric_locks


async def get_notification_service(
    session: AsyncSession = Depends(get_session)
) -> BreachNotificationService:
    """Get breach notification service instance."""
    return BreachNotificationService(
        SQLAlchemyBreachNotificationRepository(session),
        SQLAlchemyMetricRepository(session),
    )


async def get_tolerance_service(
    session: AsyncSession = Depends(get_session),
    notification_service: BreachNotificationService = Depends(get_notification_service),
    engine: EscalationEngine = Depends(get_escalation_engine),
    config_provider: IEscalationConfigProvider = Depends(get_config_provider),
    locks: MetricLockRegistry = Depends(get_metric_locks),
) -> ToleranceService:
    """Get tolerance service instance; commits inside the per-metric lock."""
    return ToleranceService(
        SQLAlchemyMetricRepository(session),
        SQLAlchemyReadingRepository(session),
        SQLAlchemyVarianceRepository(session),
        notification_service,
        escalation_engine=engine,
        config_provider=config_provider,
        locks=locks,
        commit=session.commit,
    )


def _ingest_response(result: IngestResult) -> IngestResponse:
    return IngestResponse(
        reading_id=result.reading.id,
        duplicate_reading=result.duplicate_reading,
        variance=VarianceRecordResponse.from_domain(result.variance_record),
        notification=(
            BreachNotificationResponse.from_domain(result.notification)
            if result.notification else None
        ),
        notification_created=result.notification_created,
        escalation_id=result.escalation.id if result.escalation else None,
        escalation_created=result.escalation_created,
    )


# ========== Metrics ==========

@router.post(
    "/metrics",
    response_model=MetricResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Define a monitored metric",
    responses={422: {"description": "Invalid tolerance band"}}
)
async def create_metric(
    request: MetricCreateRequest,
    tolerance_service: ToleranceService = Depends(get_tolerance_service)
):
    metric = await tolerance_service.define_metric(request.to_domain())
    return MetricResponse.from_domain(metric)


@router.get(
    "/metrics",
    response_model=List[MetricResponse],
    summary="List monitored metrics"
)
async def list_metrics(
    active_only: bool = Query(True),
    tolerance_service: ToleranceService = Depends(get_tolerance_service)
):
    return [MetricResponse.from_domain(m) for m in await tolerance_service.list_metrics(active_only)]


@router.get(
    "/metrics/{metric_id}",
    response_model=MetricResponse,
    summary="Get a monitored metric",
    responses={404: {"description": "Metric not found"}}
)
async def get_metric(
    metric_id: str,
    tolerance_service: ToleranceService = Depends(get_tolerance_service)
):
    return MetricResponse.from_domain(await tolerance_service.get_metric(metric_id))


@router.post(
    "/metrics/{metric_id}/readings",
    response_model=IngestResponse,
    summary="Ingest a metric reading",
    description="""
    Record and classify a reading against the metric's tolerance band.

    **Idempotent**: a reading is identified by `(metric, measurement_date)`.
    Re-sending it returns the existing classification and never creates a
    second breach notification or escalation.

    **Classification** (first match wins):
    - `|variance| >= breach_percentage` -> `breach`
    - `|variance| >= warning_percentage` -> `warning`
    - otherwise -> `within_appetite`
    """,
    responses={
        200: {"content": {"application/json": {"example": INGEST_RESPONSE_EXAMPLE}}},
        404: {"description": "Metric not found"}
    }
)
async def ingest_reading(
    metric_id: str,
    request: ReadingIngestRequest,
    tolerance_service: ToleranceService = Depends(get_tolerance_service)
):
    start_time = time.perf_counter()

    result = await tolerance_service.ingest_reading(
        metric_id,
        request.actual_value,
        request.measurement_date,
    )

    logger.info(
        "Reading ingested",
        extra={
            "metric_id": metric_id,
            "duplicate_reading": result.duplicate_reading,
            "notification_created": result.notification_created,
            "escalation_created": result.escalation_created,
            "processing_time_ms": int((time.perf_counter() - start_time) * 1000)
        }
    )
    return _ingest_response(result)


@router.put(
    "/metrics/{metric_id}/band",
    response_model=Optional[IngestResponse],
    summary="Replace a metric's tolerance band",
    description="""
    Replace the band and re-classify the metric's most recent reading
    against it. Earlier classifications are kept for audit. Returns null
    when the metric has no readings yet.
    """,
    responses={404: {"description": "Metric not found"}, 422: {"description": "Invalid tolerance band"}}
)
async def update_band(
    metric_id: str,
    request: ToleranceBandDTO,
    tolerance_service: ToleranceService = Depends(get_tolerance_service)
):
    result = await tolerance_service.update_tolerance_band(metric_id, request.to_domain())
    return _ingest_response(result) if result else None


@router.get(
    "/metrics/{metric_id}/variance",
    response_model=List[VarianceRecordResponse],
    summary="Variance history for a metric"
)
async def get_variance_history(
    metric_id: str,
    limit: int = Query(100, ge=1, le=1000),
    tolerance_service: ToleranceService = Depends(get_tolerance_service)
):
    records = await tolerance_service.get_variance_history(metric_id, limit=limit)
    return [VarianceRecordResponse.from_domain(r) for r in records]


# ========== Notifications ==========

@router.get(
    "/notifications",
    response_model=NotificationListResponse,
    summary="List breach notifications"
)
async def list_notifications(
    metric_id: Optional[str] = Query(None),
    unacknowledged_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    notification_service: BreachNotificationService = Depends(get_notification_service)
):
    notifications = await notification_service.list_notifications(
        metric_id=metric_id,
        unacknowledged_only=unacknowledged_only,
        limit=limit,
        offset=offset,
    )
    return NotificationListResponse(
        notifications=[BreachNotificationResponse.from_domain(n) for n in notifications],
        total_count=len(notifications),
    )


@router.post(
    "/notifications/{notification_id}/acknowledge",
    response_model=BreachNotificationResponse,
    summary="Acknowledge a breach notification",
    description="""
    Record that a user is aware of the breach. This does not resolve any
    escalation started for it; resolve the escalation separately.
    """,
    responses={404: {"description": "Notification not found"}, 409: {"description": "Already acknowledged"}}
)
async def acknowledge_notification(
    notification_id: str,
    request: NotificationAcknowledgeRequest,
    notification_service: BreachNotificationService = Depends(get_notification_service)
):
    notification = await notification_service.acknowledge(notification_id, request.user_id)
    return BreachNotificationResponse.from_domain(notification)


@router.post(
    "/notifications/dispatch",
    response_model=DeliveryResponse,
    summary="Deliver pending breach notifications",
    description="Send every undelivered notification; normally run by the scheduler."
)
async def dispatch_notifications(
    http_request: Request,
    notification_service: BreachNotificationService = Depends(get_notification_service),
    config_provider: IEscalationConfigProvider = Depends(get_config_provider)
):
    summary = await notification_service.dispatch_pending(
        http_request.app.state.notification_sender,
        config_provider.get_config().breach_recipients,
    )
    return DeliveryResponse(
        attempted=summary.attempted,
        sent=summary.sent,
        failed=summary.failed,
        skipped=summary.skipped,
    )
