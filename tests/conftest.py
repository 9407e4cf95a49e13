"""
Shared fixtures.

Repositories are in-memory implementations of the application
interfaces. They store deep copies so a test sees exactly what a real
store would hand back, and the execution repository enforces the same
version check as the SQL one.
"""

import copy
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from src.config import ExecutionStatus, OPEN_INCIDENT_STATUSES
from src.core import ConcurrentModificationException, StoreUnavailableException
from src.escalation.application import (
    EscalationEngine,
    IEscalationConfigProvider,
    IEscalationExecutionRepository,
    IEscalationPolicyRepository,
    INotificationSender,
    NotificationDispatcher,
)
from src.escalation.domain import EscalationConfig, EscalationExecution, EscalationPolicy
from src.sla.application import IIncidentRepository
from src.sla.domain import Incident
from src.tolerance.application import (
    BreachNotificationService,
    IBreachNotificationRepository,
    IMetricRepository,
    IReadingRepository,
    IVarianceRepository,
    ToleranceService,
)
from src.tolerance.domain import BreachNotification, MetricDefinition, MetricReading, VarianceRecord

T0 = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


# ========== Clock ==========

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 0, **kwargs) -> datetime:
        self.now = self.now + timedelta(minutes=minutes, **kwargs)
        return self.now

    def set(self, minutes_from_start: float) -> datetime:
        self.now = T0 + timedelta(minutes=minutes_from_start)
        return self.now


# ========== Notification channel ==========

class RecordingSender(INotificationSender):
    """Records every send; fails for recipients listed in ``failing``."""

    def __init__(self):
        self.sent: List[dict] = []
        self.failing: set = set()

    async def send(self, recipients: Sequence[str], subject: str, body: str) -> bool:
        if self.failing.intersection(recipients):
            return False
        self.sent.append({"recipients": list(recipients), "subject": subject, "body": body})
        return True

    async def close(self) -> None:
        return None


class StaticConfigProvider(IEscalationConfigProvider):
    def __init__(self, config: EscalationConfig):
        self.config = config

    def get_config(self) -> EscalationConfig:
        return self.config


# ========== In-memory repositories ==========

class InMemoryPolicyRepository(IEscalationPolicyRepository):
    def __init__(self):
        self.policies: Dict[str, EscalationPolicy] = {}

    async def get(self, policy_id: str) -> Optional[EscalationPolicy]:
        return self.policies.get(policy_id)

    async def list(self, active_only: bool = True) -> List[EscalationPolicy]:
        policies = sorted(self.policies.values(), key=lambda p: p.policy_name)
        return [p for p in policies if p.is_active or not active_only]

    async def save(self, policy: EscalationPolicy) -> EscalationPolicy:
        self.policies[policy.id] = policy
        return policy


class InMemoryExecutionRepository(IEscalationExecutionRepository):
    def __init__(self):
        self.executions: Dict[str, EscalationExecution] = {}
        self.unavailable = False

    def _check(self) -> None:
        if self.unavailable:
            raise StoreUnavailableException("Store unavailable during test", {"operation": "test"})

    async def get(self, execution_id: str) -> Optional[EscalationExecution]:
        self._check()
        stored = self.executions.get(execution_id)
        return copy.deepcopy(stored) if stored else None

    async def find_active_by_alert(self, alert_id: str) -> Optional[EscalationExecution]:
        self._check()
        for stored in self.executions.values():
            if stored.alert_id == alert_id and stored.status == ExecutionStatus.ACTIVE:
                return copy.deepcopy(stored)
        return None

    async def create_if_absent(self, execution: EscalationExecution) -> tuple[EscalationExecution, bool]:
        self._check()
        existing = await self.find_active_by_alert(execution.alert_id)
        if existing is not None:
            return existing, False
        self.executions[execution.id] = copy.deepcopy(execution)
        return execution, True

    async def update(self, execution: EscalationExecution, expected_version: int) -> EscalationExecution:
        self._check()
        stored = self.executions.get(execution.id)
        if stored is None or stored.version != expected_version:
            raise ConcurrentModificationException("EscalationExecution", str(execution.id), expected_version)
        execution.version = expected_version + 1
        self.executions[execution.id] = copy.deepcopy(execution)
        return execution

    async def list_due(self, now: datetime, limit: int = 100) -> List[EscalationExecution]:
        self._check()
        due = [
            e for e in self.executions.values()
            if e.status == ExecutionStatus.ACTIVE and e.next_due_at is not None and e.next_due_at <= now
        ]
        due.sort(key=lambda e: e.next_due_at)
        return [copy.deepcopy(e) for e in due[:limit]]

    async def list(
        self,
        status=None,
        alert_source=None,
        policy_id=None,
        start=None,
        end=None,
        limit=None,
        offset=0,
    ) -> List[EscalationExecution]:
        self._check()
        items = [
            e for e in self.executions.values()
            if (status is None or e.status == status)
            and (alert_source is None or e.alert_source == alert_source)
            and (policy_id is None or e.policy_id == policy_id)
            and (start is None or e.escalated_at >= start)
            and (end is None or e.escalated_at <= end)
        ]
        items.sort(key=lambda e: e.escalated_at, reverse=True)
        items = items[offset:]
        if limit is not None:
            items = items[:limit]
        return [copy.deepcopy(e) for e in items]

    def active(self) -> List[EscalationExecution]:
        return [e for e in self.executions.values() if e.status == ExecutionStatus.ACTIVE]


class InMemoryMetricRepository(IMetricRepository):
    def __init__(self):
        self.metrics: Dict[str, MetricDefinition] = {}

    async def get(self, metric_id: str) -> Optional[MetricDefinition]:
        stored = self.metrics.get(metric_id)
        return copy.deepcopy(stored) if stored else None

    async def list(self, active_only: bool = True) -> List[MetricDefinition]:
        metrics = sorted(self.metrics.values(), key=lambda m: m.name)
        return [copy.deepcopy(m) for m in metrics if m.is_active or not active_only]

    async def save(self, metric: MetricDefinition) -> MetricDefinition:
        self.metrics[metric.id] = copy.deepcopy(metric)
        return metric


class InMemoryReadingRepository(IReadingRepository):
    def __init__(self):
        self.readings: List[MetricReading] = []

    async def find(self, metric_id: str, measurement_date: datetime) -> Optional[MetricReading]:
        for reading in self.readings:
            if reading.metric_id == metric_id and reading.measurement_date == measurement_date:
                return reading
        return None

    async def add(self, reading: MetricReading) -> MetricReading:
        self.readings.append(reading)
        return reading

    async def latest(self, metric_id: str) -> Optional[MetricReading]:
        readings = [r for r in self.readings if r.metric_id == metric_id]
        return max(readings, key=lambda r: r.measurement_date) if readings else None


class InMemoryVarianceRepository(IVarianceRepository):
    def __init__(self):
        self.records: List[VarianceRecord] = []

    async def add(self, record: VarianceRecord) -> VarianceRecord:
        self.records.append(record)
        return record

    async def latest_for_reading(self, reading_id: str) -> Optional[VarianceRecord]:
        records = [r for r in self.records if r.reading_id == reading_id]
        return records[-1] if records else None

    async def list_for_metric(self, metric_id: str, limit: int = 100) -> List[VarianceRecord]:
        records = [r for r in self.records if r.metric_id == metric_id]
        return list(reversed(records))[:limit]


class InMemoryNotificationRepository(IBreachNotificationRepository):
    def __init__(self):
        self.notifications: Dict[str, BreachNotification] = {}

    async def get(self, notification_id: str) -> Optional[BreachNotification]:
        stored = self.notifications.get(notification_id)
        return copy.deepcopy(stored) if stored else None

    async def create_if_absent(self, notification: BreachNotification) -> tuple[BreachNotification, bool]:
        for stored in self.notifications.values():
            if stored.dedup_key == notification.dedup_key:
                return copy.deepcopy(stored), False
        self.notifications[notification.id] = copy.deepcopy(notification)
        return notification, True

    async def save(self, notification: BreachNotification) -> BreachNotification:
        self.notifications[notification.id] = copy.deepcopy(notification)
        return notification

    async def list(
        self,
        metric_id: Optional[str] = None,
        unacknowledged_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[BreachNotification]:
        items = [
            n for n in self.notifications.values()
            if (metric_id is None or n.metric_id == metric_id)
            and (not unacknowledged_only or not n.is_acknowledged)
        ]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return [copy.deepcopy(n) for n in items[offset:offset + limit]]

    async def list_unsent(self, limit: int = 100) -> List[BreachNotification]:
        items = sorted(
            (n for n in self.notifications.values() if not n.notification_sent),
            key=lambda n: n.created_at,
        )
        return [copy.deepcopy(n) for n in items[:limit]]


class InMemoryIncidentRepository(IIncidentRepository):
    def __init__(self):
        self.incidents: Dict[str, Incident] = {}
        self.unavailable = False

    async def get(self, incident_id: str) -> Optional[Incident]:
        return self.incidents.get(incident_id)

    async def list_open(self) -> List[Incident]:
        if self.unavailable:
            raise StoreUnavailableException("Store unavailable during list open incidents")
        return [i for i in self.incidents.values() if i.status in OPEN_INCIDENT_STATUSES]

    async def save(self, incident: Incident) -> Incident:
        self.incidents[incident.id] = incident
        return incident


# ========== Fixtures ==========

ESCALATION_CONFIG = {
    "policies": [
        {
            "id": "default",
            "policy_name": "Default breach escalation",
            "levels": [
                {"level": 1, "delay_minutes": 0, "recipients": ["owner@example.com"]},
                {"level": 2, "delay_minutes": 30, "recipients": ["committee@example.com"]},
                {"level": 3, "delay_minutes": 120, "recipients": ["cro@example.com"]},
            ],
            "repeat_interval_minutes": 0,
        },
        {
            "id": "critical",
            "policy_name": "Critical breach escalation",
            "levels": [
                {"level": 1, "delay_minutes": 0, "recipients": ["cro@example.com"]},
            ],
            "repeat_interval_minutes": 30,
        },
        {
            "id": "sla",
            "policy_name": "Incident SLA escalation",
            "levels": [
                {"level": 1, "delay_minutes": 0, "recipients": ["oncall@example.com"]},
                {"level": 2, "delay_minutes": 60, "recipients": ["manager@example.com"]},
            ],
        },
    ],
    "breach_policies": {"warning": None, "breach": "default", "critical": "critical"},
    "breach_recipients": ["risk-alerts@example.com"],
    "sla_policy": "sla",
    "sla_allowance_minutes": {"critical": 60, "high": 240},
}


@pytest.fixture
def clock() -> FakeClock:
    """Provide a clock frozen at T0."""
    return FakeClock()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def dispatcher(sender: RecordingSender) -> NotificationDispatcher:
    return NotificationDispatcher(sender)


@pytest.fixture
def escalation_config() -> EscalationConfig:
    return EscalationConfig(**copy.deepcopy(ESCALATION_CONFIG))


@pytest.fixture
def config_provider(escalation_config: EscalationConfig) -> StaticConfigProvider:
    return StaticConfigProvider(escalation_config)


@pytest.fixture
def policy_repo(escalation_config: EscalationConfig) -> InMemoryPolicyRepository:
    """Provide a policy store seeded from the test config."""
    repo = InMemoryPolicyRepository()
    for policy_config in escalation_config.policies:
        repo.policies[policy_config.id] = policy_config.to_domain()
    return repo


@pytest.fixture
def execution_repo() -> InMemoryExecutionRepository:
    return InMemoryExecutionRepository()


@pytest.fixture
def engine(execution_repo, policy_repo, dispatcher, config_provider, clock) -> EscalationEngine:
    return EscalationEngine(
        execution_repo,
        policy_repo,
        dispatcher,
        config_provider=config_provider,
        clock=clock,
    )


@pytest.fixture
def metric_repo() -> InMemoryMetricRepository:
    return InMemoryMetricRepository()


@pytest.fixture
def reading_repo() -> InMemoryReadingRepository:
    return InMemoryReadingRepository()


@pytest.fixture
def variance_repo() -> InMemoryVarianceRepository:
    return InMemoryVarianceRepository()


@pytest.fixture
def notification_repo() -> InMemoryNotificationRepository:
    return InMemoryNotificationRepository()


@pytest.fixture
def notification_service(notification_repo, metric_repo, clock) -> BreachNotificationService:
    return BreachNotificationService(notification_repo, metric_repo, clock=clock)


@pytest.fixture
def tolerance_service(
    metric_repo,
    reading_repo,
    variance_repo,
    notification_service,
    engine,
    config_provider,
    clock,
) -> ToleranceService:
    return ToleranceService(
        metric_repo,
        reading_repo,
        variance_repo,
        notification_service,
        escalation_engine=engine,
        config_provider=config_provider,
        clock=clock,
    )


@pytest.fixture
def incident_repo() -> InMemoryIncidentRepository:
    return InMemoryIncidentRepository()
