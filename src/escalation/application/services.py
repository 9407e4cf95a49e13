"""
Escalation Application Services
================================

Application services orchestrate the escalation state machine and
coordinate between domain entities and repositories.

Following SOLID principles:
- Single Responsibility: policy management, execution, and reporting are
  separate services
- Dependency Inversion: depend on repository abstractions, not SQLAlchemy
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional
from uuid import uuid4

from src.config import AlertSource, ExecutionStatus
from src.core import (
    ApplicationException,
    ConcurrentModificationException,
    ConfigurationException,
    ResourceNotFoundException,
    StoreUnavailableException,
)
from src.escalation.application.notifications import (
    NotificationDispatcher,
    NotificationMessage,
    render_escalation_message,
)
from src.escalation.domain import (
    AlertEvent,
    EscalationConfig,
    EscalationExecution,
    EscalationPolicy,
    EscalationStatistics,
    EscalationStep,
    EscalationSummary,
    StepKind,
)
from src.shared.infrastructure.logging import get_context_logger, get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]
Commit = Callable[[], Awaitable[None]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IEscalationPolicyRepository(ABC):
    """Interface for escalation policy storage."""

    @abstractmethod
    async def get(self, policy_id: str) -> Optional[EscalationPolicy]:
        """Get policy by id."""

    @abstractmethod
    async def list(self, active_only: bool = True) -> List[EscalationPolicy]:
        """List policies ordered by name."""

    @abstractmethod
    async def save(self, policy: EscalationPolicy) -> EscalationPolicy:
        """Insert or replace a policy."""


class IEscalationExecutionRepository(ABC):
    """Interface for escalation execution storage."""

    @abstractmethod
    async def get(self, execution_id: str) -> Optional[EscalationExecution]:
        """Get execution by id."""

    @abstractmethod
    async def find_active_by_alert(self, alert_id: str) -> Optional[EscalationExecution]:
        """The active execution keyed to an alert, if any."""

    @abstractmethod
    async def create_if_absent(self, execution: EscalationExecution) -> tuple[EscalationExecution, bool]:
        """
        Insert unless an active execution already exists for the alert.

        Returns the stored execution and whether it was created by this call.
        """

    @abstractmethod
    async def update(self, execution: EscalationExecution, expected_version: int) -> EscalationExecution:
        """
        Persist changes if the stored version still equals ``expected_version``.

        Raises:
            ConcurrentModificationException: another writer got there first
        """

    @abstractmethod
    async def list_due(self, now: datetime, limit: int = 100) -> List[EscalationExecution]:
        """Active executions whose next timer deadline is at or before ``now``."""

    @abstractmethod
    async def list(
        self,
        status: Optional[ExecutionStatus] = None,
        alert_source: Optional[AlertSource] = None,
        policy_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[EscalationExecution]:
        """List executions filtered by status/source/policy and escalated_at window."""


class IEscalationConfigProvider(ABC):
    """Interface for escalation configuration access."""

    @abstractmethod
    def get_config(self) -> EscalationConfig:
        """Get current escalation configuration."""


# ========== Results ==========

@dataclass
class EscalationStart:
    execution: EscalationExecution
    created: bool
    delivery: Optional[asyncio.Task] = None


@dataclass
class TickSummary:
    evaluated: int = 0
    advanced: int = 0
    repeated: int = 0
    conflicts: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


# ========== Application Services ==========

class EscalationPolicyService:
    """Policy store: lookup, validated create/update, seeding from config."""

    def __init__(self, policy_repository: IEscalationPolicyRepository):
        self._policy_repo = policy_repository

    async def get_policy(self, policy_id: str) -> EscalationPolicy:
        """
        Raises:
            ResourceNotFoundException: unknown policy id
        """
        policy = await self._policy_repo.get(policy_id)
        if policy is None:
            raise ResourceNotFoundException("EscalationPolicy", policy_id)
        return policy

    async def list_policies(self, active_only: bool = True) -> List[EscalationPolicy]:
        return await self._policy_repo.list(active_only=active_only)

    async def create_policy(self, policy: EscalationPolicy) -> EscalationPolicy:
        """Store a new policy; its levels were validated on construction."""
        if await self._policy_repo.get(policy.id) is not None:
            raise ConfigurationException(f"escalation policy '{policy.id}' already exists")
        saved = await self._policy_repo.save(policy)
        logger.info("Escalation policy created", extra={"policy_id": policy.id, "levels": len(policy.levels)})
        return saved

    async def update_policy(self, policy: EscalationPolicy) -> EscalationPolicy:
        """
        Replace a policy.

        Executions already in flight keep the snapshot taken when they
        started; only new executions see the change.
        """
        await self.get_policy(policy.id)
        saved = await self._policy_repo.save(policy)
        logger.info("Escalation policy updated", extra={"policy_id": policy.id, "levels": len(policy.levels)})
        return saved

    async def seed(self, config: EscalationConfig) -> int:
        """Insert config-defined policies that are not stored yet."""
        created = 0
        for policy_config in config.policies:
            if await self._policy_repo.get(policy_config.id) is None:
                await self._policy_repo.save(policy_config.to_domain())
                created += 1
        if created:
            logger.info("Seeded escalation policies", extra={"created": created})
        return created


class EscalationEngine:
    """
    The escalation state machine driver.

    Every mutation follows load -> domain transition -> conditional update,
    so duplicate ticks and concurrent API calls cannot double-apply a
    transition. Notifications go out only once the state they announce
    has been committed, and are never awaited here.
    """

    def __init__(
        self,
        execution_repository: IEscalationExecutionRepository,
        policy_repository: IEscalationPolicyRepository,
        dispatcher: NotificationDispatcher,
        config_provider: Optional[IEscalationConfigProvider] = None,
        default_repeat_interval: Optional[int] = None,
        commit: Optional[Commit] = None,
        clock: Optional[Clock] = None,
    ):
        self._execution_repo = execution_repository
        self._policy_repo = policy_repository
        self._dispatcher = dispatcher
        self._config_provider = config_provider
        self._default_repeat_interval = default_repeat_interval
        self._commit = commit
        self._clock = clock or utc_now

    def _repeat_interval(self) -> Optional[int]:
        if self._config_provider is not None:
            configured = self._config_provider.get_config().default_repeat_interval_minutes
            if configured is not None:
                return configured
        return self._default_repeat_interval

    # ========== Creation ==========

    async def start_escalation(self, alert: AlertEvent, policy_id: str, notify: bool = True) -> EscalationStart:
        """
        Start escalating an alert, unless it is already being escalated.

        With ``notify=False`` the first level is not contacted; the caller
        sends it later through ``notify_started`` once its batch is safe.

        Raises:
            ResourceNotFoundException: unknown or inactive policy
        """
        existing = await self._execution_repo.find_active_by_alert(alert.alert_id)
        if existing is not None:
            return EscalationStart(execution=existing, created=False)

        policy = await self._policy_repo.get(policy_id)
        if policy is None or not policy.is_active:
            raise ResourceNotFoundException("EscalationPolicy", policy_id)

        now = self._clock()
        execution = EscalationExecution.start(
            alert,
            policy.id,
            policy.snapshot(self._repeat_interval()),
            now,
            execution_id=str(uuid4()),
        )
        stored, created = await self._execution_repo.create_if_absent(execution)
        if not created:
            return EscalationStart(execution=stored, created=False)

        get_context_logger(__name__, execution_id=stored.id, alert_id=alert.alert_id).info(
            "Escalation started",
            extra={"policy_id": policy.id, "level": stored.current_level, "source": AlertSource(alert.source).value}
        )

        delivery = self.notify_started(stored) if notify else None
        return EscalationStart(execution=stored, created=True, delivery=delivery)

    def notify_started(self, execution: EscalationExecution) -> Optional[asyncio.Task]:
        """Send the first level's notification for a newly started execution."""
        first_level = execution.policy_snapshot.first_level
        return self._dispatcher.dispatch(render_escalation_message(execution, first_level))

    # ========== Timer ==========

    async def process_due(self, now: Optional[datetime] = None, limit: int = 100) -> TickSummary:
        """
        Evaluate every execution whose timer has expired.

        One execution failing or losing a race does not stop the others.
        Level notifications are held back until the whole pass has been
        committed.

        Raises:
            StoreUnavailableException: the store failed; nothing from this
                pass is committed or sent
        """
        now = now or self._clock()
        summary = TickSummary()
        messages: List[NotificationMessage] = []

        for execution in await self._execution_repo.list_due(now, limit=limit):
            summary.evaluated += 1
            try:
                applied = await self._apply_due_step(execution, now)
            except ConcurrentModificationException:
                summary.conflicts += 1
                continue
            except StoreUnavailableException as e:
                logger.error(
                    "Escalation tick aborted",
                    extra={"execution_id": execution.id, "error": e.message}
                )
                raise
            except ApplicationException as e:
                summary.failed += 1
                summary.errors.append(f"{execution.id}: {e.message}")
                logger.error(
                    "Escalation tick failed",
                    extra={"execution_id": execution.id, "error": e.message}
                )
                continue

            if applied is None:
                continue
            step, message = applied
            messages.append(message)
            if step.kind == StepKind.ADVANCE:
                summary.advanced += 1
            else:
                summary.repeated += 1

        await self._commit_and_send(messages)

        if summary.evaluated:
            logger.info(
                "Escalation tick complete",
                extra={
                    "evaluated": summary.evaluated,
                    "advanced": summary.advanced,
                    "repeated": summary.repeated,
                    "conflicts": summary.conflicts,
                    "failed": summary.failed,
                }
            )
        return summary

    async def tick_execution(self, execution_id: str, now: Optional[datetime] = None) -> Optional[EscalationStep]:
        """Evaluate one execution's timer; returns the step applied, if any."""
        execution = await self.get_execution(execution_id)
        applied = await self._apply_due_step(execution, now or self._clock())
        if applied is None:
            return None
        step, message = applied
        await self._commit_and_send([message])
        return step

    async def _apply_due_step(
        self,
        execution: EscalationExecution,
        now: datetime,
    ) -> Optional[tuple[EscalationStep, NotificationMessage]]:
        step = execution.due_step(now)
        if step is None:
            return None

        expected_version = execution.version
        execution.apply_step(step, now)
        stored = await self._execution_repo.update(execution, expected_version)

        get_context_logger(__name__, execution_id=stored.id, alert_id=stored.alert_id).info(
            "Escalation level repeated" if step.kind == StepKind.REPEAT else "Escalation level advanced",
            extra={"level": stored.current_level, "notification_count": stored.notification_count}
        )

        return step, render_escalation_message(stored, step.level, repeat=step.kind == StepKind.REPEAT)

    async def _commit_and_send(self, messages: List[NotificationMessage]) -> None:
        if self._commit is not None:
            await self._commit()
        for message in messages:
            self._dispatcher.dispatch(message)

    # ========== External actions ==========

    async def get_execution(self, execution_id: str) -> EscalationExecution:
        """
        Raises:
            ResourceNotFoundException: unknown execution id
        """
        execution = await self._execution_repo.get(execution_id)
        if execution is None:
            raise ResourceNotFoundException("EscalationExecution", execution_id)
        return execution

    async def list_executions(self, **filters) -> List[EscalationExecution]:
        return await self._execution_repo.list(**filters)

    async def resolve_execution(self, execution_id: str, resolved_by: Optional[str] = None) -> EscalationExecution:
        return await self._mutate(execution_id, "resolved", lambda e, now: e.resolve(now, resolved_by))

    async def cancel_execution(self, execution_id: str, reason: Optional[str] = None) -> EscalationExecution:
        return await self._mutate(execution_id, "cancelled", lambda e, now: e.cancel(now, reason))

    async def assign_execution(self, execution_id: str, user_id: str) -> EscalationExecution:
        return await self._mutate(execution_id, "assigned", lambda e, now: e.assign(user_id, now))

    async def acknowledge_execution(self, execution_id: str, user_id: str) -> EscalationExecution:
        return await self._mutate(execution_id, "acknowledged", lambda e, now: e.acknowledge(user_id, now))

    async def _mutate(self, execution_id: str, action: str, transition) -> EscalationExecution:
        execution = await self.get_execution(execution_id)
        expected_version = execution.version
        transition(execution, self._clock())
        stored = await self._execution_repo.update(execution, expected_version)

        get_context_logger(__name__, execution_id=stored.id, alert_id=stored.alert_id).info(
            f"Escalation {action}",
            extra={"status": ExecutionStatus(stored.status).value, "level": stored.current_level}
        )
        return stored


class EscalationReportingService:
    """Aggregates execution history on demand."""

    def __init__(self, execution_repository: IEscalationExecutionRepository):
        self._execution_repo = execution_repository

    async def get_summary(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        alert_source: Optional[AlertSource] = None,
        policy_id: Optional[str] = None,
    ) -> EscalationSummary:
        """
        Summary of executions that started inside ``[start, end]``.

        Scope narrows by alert source and/or policy.
        """
        if start and end and start > end:
            raise ConfigurationException("report window start must not be after end")

        executions = await self._execution_repo.list(
            alert_source=alert_source,
            policy_id=policy_id,
            start=start,
            end=end,
        )
        return EscalationStatistics.summarize(executions)
