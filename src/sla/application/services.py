"""
SLA Application Services
=========================

Application services for incident SLA monitoring.

The scan treats every open incident past its deadline as an alert and
hands it to the escalation engine, which refuses to start a second
execution for an incident that already has an active one. That makes
repeated or overlapping scans harmless.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from src.config import IncidentSeverity, IncidentStatus
from src.core import ApplicationException, ConfigurationException, ResourceNotFoundException, StoreUnavailableException
from src.escalation.application import EscalationEngine, IEscalationConfigProvider, utc_now
from src.escalation.domain import AlertEvent, EscalationExecution
from src.shared.infrastructure.logging import get_logger, log_latency
from src.sla.domain import Incident, SLACalculator, SLADeadline

logger = get_logger(__name__)


# ========== Repository Interfaces ==========

class IIncidentRepository(ABC):
    """Interface for incident data access."""

    @abstractmethod
    async def get(self, incident_id: str) -> Optional[Incident]:
        """Get incident by id."""

    @abstractmethod
    async def list_open(self) -> List[Incident]:
        """All incidents whose status still needs attention."""

    @abstractmethod
    async def save(self, incident: Incident) -> Incident:
        """Insert or replace an incident."""


# ========== Results ==========

@dataclass
class ScanSummary:
    incidents_checked: int = 0
    breaches_found: int = 0
    escalations_created: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class OverdueIncident:
    incident: Incident
    deadline: SLADeadline


# ========== Application Services ==========

class SLAScanService:
    """
    Periodic SLA/deadline scan.

    Store failures abort the whole cycle so the caller's transaction rolls
    back with nothing half-created; any other per-incident failure is
    counted and the scan moves on.
    """

    def __init__(
        self,
        incident_repository: IIncidentRepository,
        escalation_engine: EscalationEngine,
        config_provider: IEscalationConfigProvider,
        commit: Optional[Callable[[], Awaitable[None]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._incident_repo = incident_repository
        self._engine = escalation_engine
        self._config_provider = config_provider
        self._commit = commit
        self._clock = clock or utc_now

    async def find_overdue(self, now: Optional[datetime] = None) -> List[OverdueIncident]:
        """Open incidents past their deadline, most overdue first."""
        now = now or self._clock()
        config = self._config_provider.get_config()

        overdue = []
        for incident in await self._incident_repo.list_open():
            deadline = SLACalculator.calculate_deadline(incident, config, now)
            if deadline.is_breached:
                overdue.append(OverdueIncident(incident=incident, deadline=deadline))

        overdue.sort(key=lambda item: item.deadline.due_at)
        return overdue

    async def run_scan(self, now: Optional[datetime] = None) -> ScanSummary:
        """
        Escalate every overdue open incident that is not already escalating.

        First-level notifications go out only after every incident has
        been processed and the new executions committed. The scan waits
        for them so it can report how many were delivered.

        Raises:
            ConfigurationException: no SLA escalation policy configured
            StoreUnavailableException: the incident or escalation store failed
        """
        now = now or self._clock()
        config = self._config_provider.get_config()
        policy_id = config.sla_policy
        if not policy_id:
            raise ConfigurationException("no sla_policy configured for incident escalation")

        summary = ScanSummary()
        started: List[EscalationExecution] = []

        with log_latency(logger, "sla_scan"):
            incidents = await self._incident_repo.list_open()
            summary.incidents_checked = len(incidents)

            for incident in incidents:
                deadline = SLACalculator.calculate_deadline(incident, config, now)
                if not deadline.is_breached:
                    continue
                summary.breaches_found += 1

                try:
                    start = await self._engine.start_escalation(
                        self._alert_for(incident, deadline), policy_id, notify=False
                    )
                except StoreUnavailableException:
                    raise
                except ResourceNotFoundException as e:
                    # Every remaining incident would fail the same way
                    raise ConfigurationException(
                        f"SLA escalation policy '{policy_id}' is not available",
                        {"policy_id": policy_id}
                    ) from e
                except ApplicationException as e:
                    summary.errors.append(f"{incident.id}: {e.message}")
                    logger.error(
                        "SLA escalation failed for incident",
                        extra={"incident_id": incident.id, "error": e.message}
                    )
                    continue

                if start.created:
                    summary.escalations_created += 1
                    started.append(start.execution)

            if self._commit is not None:
                await self._commit()

            deliveries = [
                task for task in (self._engine.notify_started(execution) for execution in started)
                if task is not None
            ]
            if deliveries:
                results = await asyncio.gather(*deliveries)
                summary.notifications_sent = sum(1 for delivered in results if delivered)
                summary.notifications_failed = len(results) - summary.notifications_sent

        logger.info(
            "SLA scan complete",
            extra={
                "incidents_checked": summary.incidents_checked,
                "breaches_found": summary.breaches_found,
                "escalations_created": summary.escalations_created,
                "notifications_sent": summary.notifications_sent,
                "notifications_failed": summary.notifications_failed,
                "errors": len(summary.errors),
            }
        )
        return summary

    @staticmethod
    def _alert_for(incident: Incident, deadline: SLADeadline) -> AlertEvent:
        return AlertEvent.for_incident(
            incident.id,
            title=f"SLA breach: {incident.title}",
            reason=(
                f"Incident open past its SLA deadline {deadline.due_at.isoformat()} "
                f"({deadline.overdue_minutes:.0f} minutes overdue)"
            ),
            severity=IncidentSeverity(incident.severity).value,
            due_at=deadline.due_at.isoformat(),
        )


class IncidentService:
    """Registers and updates the incidents the SLA scan watches."""

    def __init__(self, incident_repository: IIncidentRepository):
        self._incident_repo = incident_repository

    async def get_incident(self, incident_id: str) -> Incident:
        incident = await self._incident_repo.get(incident_id)
        if incident is None:
            raise ResourceNotFoundException("Incident", incident_id)
        return incident

    async def upsert_incident(self, incident: Incident) -> Incident:
        saved = await self._incident_repo.save(incident)
        logger.info(
            "Incident recorded",
            extra={"incident_id": incident.id, "status": IncidentStatus(incident.status).value}
        )
        return saved
