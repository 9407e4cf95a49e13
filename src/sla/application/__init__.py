"""
SLA Application Layer
======================

Application layer for incident SLA monitoring.

Contains:
- Services: SLAScanService, IncidentService
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.sla.application.dto import (
    IncidentResponse,
    IncidentUpsertRequest,
    OverdueIncidentResponse,
    ScanResponse,
)
from src.sla.application.services import (
    IIncidentRepository,
    IncidentService,
    OverdueIncident,
    ScanSummary,
    SLAScanService,
)

__all__ = [
    # DTOs
    "IncidentUpsertRequest",
    "IncidentResponse",
    "OverdueIncidentResponse",
    "ScanResponse",
    # Services
    "SLAScanService",
    "IncidentService",
    "ScanSummary",
    "OverdueIncident",
    # Repository Interfaces
    "IIncidentRepository",
]
