"""
Escalation Domain Layer
=======================

Domain layer for the escalation engine.

Contains:
- Entities: EscalationExecution, AlertEvent, ExecutionLogEntry
- Value Objects: EscalationLevel, EscalationPolicy, PolicySnapshot, EscalationConfig
- Domain Services: EscalationTimer, EscalationStatistics

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.escalation.domain.entities import (
    AlertEvent,
    EscalationExecution,
    ExecutionLogEntry,
)
from src.escalation.domain.statistics import (
    EscalationStatistics,
    EscalationSummary,
    TrendPoint,
)
from src.escalation.domain.value_objects import (
    EscalationConfig,
    EscalationLevel,
    EscalationLevelConfig,
    EscalationPolicy,
    EscalationPolicyConfig,
    EscalationStep,
    EscalationTimer,
    PolicySnapshot,
    StepKind,
    validate_levels,
)

__all__ = [
    # Entities
    "AlertEvent",
    "EscalationExecution",
    "ExecutionLogEntry",
    # Value Objects & Services
    "EscalationConfig",
    "EscalationLevel",
    "EscalationLevelConfig",
    "EscalationPolicy",
    "EscalationPolicyConfig",
    "EscalationStep",
    "EscalationTimer",
    "PolicySnapshot",
    "StepKind",
    "validate_levels",
    # Reporting
    "EscalationStatistics",
    "EscalationSummary",
    "TrendPoint",
]
