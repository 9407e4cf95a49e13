"""
SLA Controllers (API Routes)
=============================

FastAPI routes for incident intake and the SLA scan trigger.

Controllers are thin - they delegate to application services.
"""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.escalation.application import EscalationEngine, IEscalationConfigProvider
from src.escalation.interfaces.dependencies import get_config_provider, get_escalation_engine
from src.infrastructure.database import get_session
from src.shared.infrastructure.logging import get_logger
from src.sla.application import (
    IncidentResponse,
    IncidentService,
    IncidentUpsertRequest,
    OverdueIncidentResponse,
    ScanResponse,
    SLAScanService,
)
from src.sla.infrastructure import SQLAlchemyIncidentRepository

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Monitoring"])


# ========== Example payloads for Swagger ==========

SCAN_RESPONSE_EXAMPLE = {
    "incidents_checked": 12,
    "breaches_found": 3,
    "escalations_created": 2,
    "notifications_sent": 1,
    "notifications_failed": 1,
    "errors": []
}

STORE_UNAVAILABLE_EXAMPLE = {
    "error": "StoreUnavailable",
    "message": "Store unavailable during list open incidents",
    "details": {"operation": "list open incidents"},
    "correlation_id": "5b7c1f0e-8a8e-4e38-9c55-3f2d2f1f6a10"
}


# ========== Dependencies ==========

async def get_incident_service(
    session: AsyncSession = Depends(get_session)
) -> IncidentService:
    """Get incident service instance."""
    return IncidentService(SQLAlchemyIncidentRepository(session))


async def get_scan_service(
    session: AsyncSession = Depends(get_session),
    engine: EscalationEngine = Depends(get_escalation_engine),
    config_provider: IEscalationConfigProvider = Depends(get_config_provider),
) -> SLAScanService:
    """Get SLA scan service instance; new executions are committed before notifying."""
    return SLAScanService(
        SQLAlchemyIncidentRepository(session),
        engine,
        config_provider,
        commit=session.commit,
    )


# ========== Incidents ==========

@router.post(
    "/incidents",
    response_model=IncidentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record or update an incident",
    description="Incidents are keyed by their id in the incident store; re-posting replaces the record."
)
async def upsert_incident(
    request: IncidentUpsertRequest,
    incident_service: IncidentService = Depends(get_incident_service)
):
    incident = await incident_service.upsert_incident(request.to_domain())
    return IncidentResponse.from_domain(incident)


@router.get(
    "/incidents/overdue",
    response_model=List[OverdueIncidentResponse],
    summary="List open incidents past their SLA deadline"
)
async def list_overdue_incidents(
    scan_service: SLAScanService = Depends(get_scan_service)
):
    return [OverdueIncidentResponse.from_domain(item) for item in await scan_service.find_overdue()]


@router.get(
    "/incidents/{incident_id}",
    response_model=IncidentResponse,
    summary="Get an incident",
    responses={404: {"description": "Incident not found"}}
)
async def get_incident(
    incident_id: str,
    incident_service: IncidentService = Depends(get_incident_service)
):
    return IncidentResponse.from_domain(await incident_service.get_incident(incident_id))


# ========== Scan ==========

@router.post(
    "/scan",
    response_model=ScanResponse,
    summary="Run the SLA scan",
    description="""
    Escalate every open incident past its SLA deadline through the
    configured `sla_policy`.

    **Idempotent**: an incident that already has an active escalation is
    skipped, so retried or overlapping triggers create nothing new.

    A store failure aborts the cycle and returns `503`; nothing created
    during the cycle is kept.
    """,
    responses={
        200: {"content": {"application/json": {"example": SCAN_RESPONSE_EXAMPLE}}},
        422: {"description": "No SLA escalation policy configured"},
        503: {"content": {"application/json": {"example": STORE_UNAVAILABLE_EXAMPLE}}},
    }
)
async def run_scan(
    scan_service: SLAScanService = Depends(get_scan_service)
):
    summary = await scan_service.run_scan()
    return ScanResponse.from_domain(summary)
