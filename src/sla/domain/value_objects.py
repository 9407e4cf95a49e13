"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

The SLA clock is never stored: it is derived per open incident as
``reported_at + allowance`` each time the scan runs.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from src.config import IncidentSeverity
from src.escalation.domain import EscalationConfig
from src.sla.domain.entities import Incident


@dataclass(frozen=True)
class SLADeadline:
    """An incident's SLA deadline evaluated at one instant."""
    incident_id: str
    due_at: datetime
    evaluated_at: datetime

    @property
    def is_breached(self) -> bool:
        """Breached strictly after the deadline."""
        return self.evaluated_at > self.due_at

    @property
    def overdue_minutes(self) -> float:
        return max(0.0, (self.evaluated_at - self.due_at).total_seconds() / 60)


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all SLA deadline logic in one place.
    """

    @staticmethod
    def allowance_minutes(incident: Incident, config: EscalationConfig) -> int:
        """Per-incident override, else the configured allowance for its severity."""
        if incident.sla_minutes is not None:
            return incident.sla_minutes
        return config.get_sla_minutes(IncidentSeverity(incident.severity).value)

    @staticmethod
    def calculate_deadline(incident: Incident, config: EscalationConfig, now: datetime) -> SLADeadline:
        """
        Compute an incident's deadline as seen at ``now``.

        Args:
            incident: The incident to evaluate
            config: Current escalation config (severity allowances)
            now: Evaluation time

        Returns:
            The SLA deadline
        """
        minutes = SLACalculator.allowance_minutes(incident, config)
        return SLADeadline(
            incident_id=incident.id,
            due_at=incident.reported_at + timedelta(minutes=minutes),
            evaluated_at=now,
        )
