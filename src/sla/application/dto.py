"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA API layer.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from src.config import IncidentSeverity, IncidentStatus
from src.sla.application.services import OverdueIncident, ScanSummary
from src.sla.domain import Incident


# ========== Type Aliases for Literals ==========
IncidentSeverityStr = Literal["critical", "high", "medium", "low"]
IncidentStatusStr = Literal["open", "investigating", "resolved", "closed"]


# ========== Request DTOs ==========

class IncidentUpsertRequest(BaseModel):
    """Request model for recording or updating an incident."""
    id: str = Field(..., min_length=1, max_length=100, description="Incident id from the incident store")
    title: str = Field(..., min_length=1, max_length=500)
    severity: IncidentSeverityStr = "medium"
    status: IncidentStatusStr = "open"
    reported_at: datetime = Field(..., description="When the incident was reported")
    sla_minutes: Optional[int] = Field(None, gt=0, description="Overrides the severity allowance")
    assigned_to: Optional[str] = None
    resolved_at: Optional[datetime] = None

    @field_validator("reported_at", "resolved_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive timestamps are taken as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def to_domain(self) -> Incident:
        return Incident(
            id=self.id,
            title=self.title,
            severity=self.severity,
            status=self.status,
            reported_at=self.reported_at,
            sla_minutes=self.sla_minutes,
            assigned_to=self.assigned_to,
            resolved_at=self.resolved_at,
        )


# ========== Response DTOs ==========

class IncidentResponse(BaseModel):
    id: str
    title: str
    severity: str
    status: str
    reported_at: datetime
    sla_minutes: Optional[int] = None
    assigned_to: Optional[str] = None
    resolved_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, incident: Incident) -> "IncidentResponse":
        return cls(
            id=incident.id,
            title=incident.title,
            severity=IncidentSeverity(incident.severity).value,
            status=IncidentStatus(incident.status).value,
            reported_at=incident.reported_at,
            sla_minutes=incident.sla_minutes,
            assigned_to=incident.assigned_to,
            resolved_at=incident.resolved_at,
        )


class OverdueIncidentResponse(BaseModel):
    incident: IncidentResponse
    due_at: datetime
    overdue_minutes: float

    @classmethod
    def from_domain(cls, item: OverdueIncident) -> "OverdueIncidentResponse":
        return cls(
            incident=IncidentResponse.from_domain(item.incident),
            due_at=item.deadline.due_at,
            overdue_minutes=round(item.deadline.overdue_minutes, 1),
        )


class ScanResponse(BaseModel):
    """Outcome of one SLA scan cycle."""
    incidents_checked: int
    breaches_found: int
    escalations_created: int
    notifications_sent: int
    notifications_failed: int
    errors: List[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, summary: ScanSummary) -> "ScanResponse":
        return cls(
            incidents_checked=summary.incidents_checked,
            breaches_found=summary.breaches_found,
            escalations_created=summary.escalations_created,
            notifications_sent=summary.notifications_sent,
            notifications_failed=summary.notifications_failed,
            errors=list(summary.errors),
        )
