"""
SLA Infrastructure Repositories
================================

SQLAlchemy implementation of incident storage.
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import OPEN_INCIDENT_STATUSES, IncidentSeverity, IncidentStatus
from src.infrastructure.database import translate_store_errors
from src.sla.application import IIncidentRepository
from src.sla.domain import Incident
from src.sla.infrastructure.models import IncidentModel


class SQLAlchemyIncidentRepository(IIncidentRepository):
    """SQLAlchemy implementation of IIncidentRepository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, incident_id: str) -> Optional[Incident]:
        async with translate_store_errors("get incident"):
            model = await self._session.get(IncidentModel, incident_id, populate_existing=True)
        return self._to_domain(model) if model else None

    async def list_open(self) -> List[Incident]:
        stmt = (
            select(IncidentModel)
            .where(IncidentModel.status.in_([s.value for s in OPEN_INCIDENT_STATUSES]))
            .order_by(IncidentModel.reported_at.asc())
        )
        async with translate_store_errors("list open incidents"):
            result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def save(self, incident: Incident) -> Incident:
        async with translate_store_errors("save incident"):
            model = await self._session.get(IncidentModel, incident.id)
            if model is None:
                model = IncidentModel(id=incident.id)
                self._session.add(model)

            model.title = incident.title
            model.severity = IncidentSeverity(incident.severity).value
            model.status = IncidentStatus(incident.status).value
            model.reported_at = incident.reported_at
            model.sla_minutes = incident.sla_minutes
            model.assigned_to = incident.assigned_to
            model.resolved_at = incident.resolved_at

            await self._session.flush()
        return incident

    @staticmethod
    def _to_domain(model: IncidentModel) -> Incident:
        return Incident(
            id=model.id,
            title=model.title,
            severity=IncidentSeverity(model.severity),
            status=IncidentStatus(model.status),
            reported_at=model.reported_at,
            sla_minutes=model.sla_minutes,
            assigned_to=model.assigned_to,
            resolved_at=model.resolved_at,
        )
