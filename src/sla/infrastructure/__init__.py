"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for incident SLA monitoring:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
"""

from src.sla.infrastructure.models import IncidentModel
from src.sla.infrastructure.repositories import SQLAlchemyIncidentRepository

__all__ = [
    "IncidentModel",
    "SQLAlchemyIncidentRepository",
]
