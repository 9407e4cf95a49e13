"""
Tolerance Infrastructure Layer
===============================

Infrastructure implementations for tolerance monitoring:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
"""

from src.tolerance.infrastructure.models import (
    BreachNotificationModel,
    MetricDefinitionModel,
    MetricReadingModel,
    VarianceRecordModel,
)
from src.tolerance.infrastructure.repositories import (
    SQLAlchemyBreachNotificationRepository,
    SQLAlchemyMetricRepository,
    SQLAlchemyReadingRepository,
    SQLAlchemyVarianceRepository,
)

__all__ = [
    "BreachNotificationModel",
    "MetricDefinitionModel",
    "MetricReadingModel",
    "VarianceRecordModel",
    "SQLAlchemyBreachNotificationRepository",
    "SQLAlchemyMetricRepository",
    "SQLAlchemyReadingRepository",
    "SQLAlchemyVarianceRepository",
]
