"""
Tolerance Domain Layer
======================

Domain layer for tolerance monitoring.

Contains:
- Entities: MetricDefinition, MetricReading, VarianceRecord, BreachNotification
- Value Objects: ToleranceBand, VarianceResult
- Domain Services: VarianceCalculator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.tolerance.domain.entities import (
    MetricDefinition,
    MetricReading,
    VarianceRecord,
    BreachNotification,
)
from src.tolerance.domain.value_objects import (
    ToleranceBand,
    VarianceResult,
    VarianceCalculator,
)

__all__ = [
    # Entities
    "MetricDefinition",
    "MetricReading",
    "VarianceRecord",
    "BreachNotification",
    # Value Objects & Services
    "ToleranceBand",
    "VarianceResult",
    "VarianceCalculator",
]
