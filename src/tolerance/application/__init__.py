"""
Tolerance Application Layer
============================

Application layer for tolerance monitoring.

Contains:
- Services: ToleranceService (ingestion, band edits), BreachNotificationService
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.tolerance.application.dto import (
    BreachNotificationResponse,
    DeliveryResponse,
    IngestResponse,
    MetricCreateRequest,
    MetricResponse,
    NotificationAcknowledgeRequest,
    NotificationListResponse,
    ReadingIngestRequest,
    ToleranceBandDTO,
    VarianceRecordResponse,
)
from src.tolerance.application.services import (
    BreachNotificationService,
    DeliverySummary,
    IBreachNotificationRepository,
    IMetricRepository,
    IngestResult,
    IReadingRepository,
    IVarianceRepository,
    MetricLockRegistry,
    ToleranceService,
    render_breach_message,
)

__all__ = [
    # DTOs
    "BreachNotificationResponse",
    "DeliveryResponse",
    "IngestResponse",
    "MetricCreateRequest",
    "MetricResponse",
    "NotificationAcknowledgeRequest",
    "NotificationListResponse",
    "ReadingIngestRequest",
    "ToleranceBandDTO",
    "VarianceRecordResponse",
    # Services
    "BreachNotificationService",
    "DeliverySummary",
    "IngestResult",
    "MetricLockRegistry",
    "ToleranceService",
    "render_breach_message",
    # Repository Interfaces
    "IBreachNotificationRepository",
    "IMetricRepository",
    "IReadingRepository",
    "IVarianceRepository",
]
