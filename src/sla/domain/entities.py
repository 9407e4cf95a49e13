"""
SLA Domain Entities
====================

Pure Python domain entities for incident SLA monitoring.

Incidents are owned by the incident store; this module only reads them
and decides which ones have run past their SLA.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from src.config import OPEN_INCIDENT_STATUSES, IncidentSeverity, IncidentStatus


@dataclass
class Incident:
    """
    An operational incident tracked against a response deadline.

    ``sla_minutes`` overrides the allowance configured for the severity.
    """

    id: str
    title: str
    severity: IncidentSeverity
    status: IncidentStatus
    reported_at: datetime

    sla_minutes: Optional[int] = None
    assigned_to: Optional[str] = None
    resolved_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate incident on initialization."""
        if self.resolved_at and self.resolved_at < self.reported_at:
            raise ValueError("resolved_at cannot be before reported_at")
        if self.sla_minutes is not None and self.sla_minutes <= 0:
            raise ValueError("sla_minutes must be positive")

    @property
    def is_open(self) -> bool:
        """Check if incident still needs attention."""
        return self.status in OPEN_INCIDENT_STATUSES

    @property
    def alert_id(self) -> str:
        """Escalation identity for this incident."""
        return f"incident:{self.id}"
