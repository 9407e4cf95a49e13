"""
SLA Domain Layer
================

Domain layer for incident SLA monitoring.

Contains:
- Entities: Incident
- Value Objects: SLADeadline
- Domain Services: SLACalculator

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.sla.domain.entities import Incident
from src.sla.domain.value_objects import SLACalculator, SLADeadline

__all__ = [
    # Entities
    "Incident",
    # Value Objects & Services
    "SLACalculator",
    "SLADeadline",
]
