"""
Escalation Infrastructure Repositories
=======================================

Concrete implementations of the escalation repository interfaces using
SQLAlchemy.

Executions are single-writer per id: every update is an
``UPDATE ... WHERE id = :id AND version = :expected`` and a zero rowcount
means someone else wrote first.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import AlertSource, ExecutionStatus
from src.core import ConcurrentModificationException
from src.escalation.application import (
    IEscalationExecutionRepository,
    IEscalationPolicyRepository,
)
from src.escalation.domain import (
    EscalationExecution,
    EscalationLevel,
    EscalationPolicy,
    ExecutionLogEntry,
    PolicySnapshot,
)
from src.escalation.infrastructure.models import EscalationExecutionModel, EscalationPolicyModel
from src.infrastructure.database import translate_store_errors


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except ValueError:
        return None


class SQLAlchemyEscalationPolicyRepository(IEscalationPolicyRepository):
    """SQLAlchemy implementation of the escalation policy store."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, policy_id: str) -> Optional[EscalationPolicy]:
        async with translate_store_errors("get escalation policy"):
            model = await self._session.get(EscalationPolicyModel, policy_id)
        return self._to_domain(model) if model else None

    async def list(self, active_only: bool = True) -> List[EscalationPolicy]:
        stmt = select(EscalationPolicyModel)
        if active_only:
            stmt = stmt.where(EscalationPolicyModel.is_active.is_(True))
        stmt = stmt.order_by(EscalationPolicyModel.policy_name.asc())

        async with translate_store_errors("list escalation policies"):
            result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def save(self, policy: EscalationPolicy) -> EscalationPolicy:
        async with translate_store_errors("save escalation policy"):
            model = await self._session.get(EscalationPolicyModel, policy.id)
            if model is None:
                model = EscalationPolicyModel(id=policy.id)
                self._session.add(model)

            model.policy_name = policy.policy_name
            model.description = policy.description
            model.levels = [level.to_dict() for level in policy.levels]
            model.repeat_interval_minutes = policy.repeat_interval_minutes
            model.is_active = policy.is_active
            model.updated_at = datetime.now(timezone.utc)

            await self._session.flush()
        return policy

    @staticmethod
    def _to_domain(model: EscalationPolicyModel) -> EscalationPolicy:
        return EscalationPolicy(
            id=model.id,
            policy_name=model.policy_name,
            description=model.description or "",
            levels=tuple(EscalationLevel.from_dict(item) for item in model.levels),
            repeat_interval_minutes=model.repeat_interval_minutes,
            is_active=model.is_active,
        )


class SQLAlchemyEscalationExecutionRepository(IEscalationExecutionRepository):
    """
    SQLAlchemy implementation of the execution store.

    The partial unique index on ``alert_id`` for active rows backs up the
    existence check in ``create_if_absent`` when two creators race.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, execution_id: str) -> Optional[EscalationExecution]:
        execution_uuid = _parse_uuid(execution_id)
        if execution_uuid is None:
            return None

        async with translate_store_errors("get escalation execution"):
            result = await self._session.execute(
                select(EscalationExecutionModel).where(EscalationExecutionModel.id == execution_uuid)
                .execution_options(populate_existing=True)
            )
            model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def find_active_by_alert(self, alert_id: str) -> Optional[EscalationExecution]:
        stmt = select(EscalationExecutionModel).where(
            and_(
                EscalationExecutionModel.alert_id == alert_id,
                EscalationExecutionModel.status == ExecutionStatus.ACTIVE.value,
            )
        ).execution_options(populate_existing=True)
        async with translate_store_errors("find active escalation"):
            result = await self._session.execute(stmt)
            model = result.scalars().first()
        return self._to_domain(model) if model else None

    async def create_if_absent(self, execution: EscalationExecution) -> tuple[EscalationExecution, bool]:
        existing = await self.find_active_by_alert(execution.alert_id)
        if existing is not None:
            return existing, False

        if execution.id is None:
            execution.id = str(uuid4())
        model = EscalationExecutionModel(id=UUID(execution.id))
        self._apply(model, execution)

        async with translate_store_errors("create escalation execution"):
            try:
                async with self._session.begin_nested():
                    self._session.add(model)
                    await self._session.flush()
            except IntegrityError:
                # Another creator inserted the active row between our check and insert
                winner = await self.find_active_by_alert(execution.alert_id)
                if winner is None:
                    raise
                return winner, False

        return execution, True

    async def update(self, execution: EscalationExecution, expected_version: int) -> EscalationExecution:
        execution_uuid = _parse_uuid(execution.id)
        values = self._values(execution)
        values["version"] = expected_version + 1

        stmt = (
            update(EscalationExecutionModel)
            .where(
                and_(
                    EscalationExecutionModel.id == execution_uuid,
                    EscalationExecutionModel.version == expected_version,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        async with translate_store_errors("update escalation execution"):
            result = await self._session.execute(stmt)

        if result.rowcount != 1:
            raise ConcurrentModificationException("EscalationExecution", str(execution.id), expected_version)

        execution.version = expected_version + 1
        return execution

    async def list_due(self, now: datetime, limit: int = 100) -> List[EscalationExecution]:
        stmt = (
            select(EscalationExecutionModel)
            .where(
                and_(
                    EscalationExecutionModel.status == ExecutionStatus.ACTIVE.value,
                    EscalationExecutionModel.next_due_at.is_not(None),
                    EscalationExecutionModel.next_due_at <= now,
                )
            )
            .order_by(EscalationExecutionModel.next_due_at.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        async with translate_store_errors("list due escalations"):
            result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

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
        conditions = []
        if status is not None:
            conditions.append(EscalationExecutionModel.status == ExecutionStatus(status).value)
        if alert_source is not None:
            conditions.append(EscalationExecutionModel.alert_source == AlertSource(alert_source).value)
        if policy_id is not None:
            conditions.append(EscalationExecutionModel.policy_id == policy_id)
        if start is not None:
            conditions.append(EscalationExecutionModel.escalated_at >= start)
        if end is not None:
            conditions.append(EscalationExecutionModel.escalated_at <= end)

        stmt = select(EscalationExecutionModel).execution_options(populate_existing=True)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(EscalationExecutionModel.escalated_at.desc()).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        async with translate_store_errors("list escalation executions"):
            result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    # ========== Mapping ==========

    @staticmethod
    def _values(execution: EscalationExecution) -> dict:
        return {
            "alert_id": execution.alert_id,
            "alert_title": execution.alert_title,
            "alert_source": AlertSource(execution.alert_source).value,
            "policy_id": execution.policy_id,
            "policy_snapshot": execution.policy_snapshot.to_dict(),
            "status": ExecutionStatus(execution.status).value,
            "current_level": execution.current_level,
            "escalation_reason": execution.escalation_reason,
            "notification_count": execution.notification_count,
            "escalated_at": execution.escalated_at,
            "last_level_notified_at": execution.last_level_notified_at,
            "next_due_at": execution.next_due_at,
            "resolved_at": execution.resolved_at,
            "cancelled_at": execution.cancelled_at,
            "cancel_reason": execution.cancel_reason,
            "assigned_to": execution.assigned_to,
            "acknowledged_by": execution.acknowledged_by,
            "acknowledged_at": execution.acknowledged_at,
            "execution_log": [entry.to_dict() for entry in execution.execution_log],
        }

    def _apply(self, model: EscalationExecutionModel, execution: EscalationExecution) -> None:
        for key, value in self._values(execution).items():
            setattr(model, key, value)
        model.version = execution.version

    @staticmethod
    def _to_domain(model: EscalationExecutionModel) -> EscalationExecution:
        return EscalationExecution(
            id=str(model.id),
            alert_id=model.alert_id,
            alert_title=model.alert_title,
            alert_source=AlertSource(model.alert_source),
            policy_id=model.policy_id,
            policy_snapshot=PolicySnapshot.from_dict(model.policy_snapshot),
            current_level=model.current_level,
            escalation_reason=model.escalation_reason,
            escalated_at=model.escalated_at,
            last_level_notified_at=model.last_level_notified_at,
            status=ExecutionStatus(model.status),
            notification_count=model.notification_count,
            resolved_at=model.resolved_at,
            cancelled_at=model.cancelled_at,
            cancel_reason=model.cancel_reason,
            assigned_to=model.assigned_to,
            acknowledged_by=model.acknowledged_by,
            acknowledged_at=model.acknowledged_at,
            version=model.version,
            execution_log=[ExecutionLogEntry.from_dict(item) for item in (model.execution_log or [])],
        )
