"""
Escalation Domain Entities
===========================

The escalation execution is the only mutable entity in the engine. Every
transition goes through a method here so the state machine rules live in
one place:

    active --advance/repeat--> active
    active --acknowledge-----> active (halted) | resolved (at last level)
    active --resolve---------> resolved
    active --cancel----------> cancelled
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.config import AlertSource, ExecutionStatus
from src.core import AlreadyAcknowledgedException, AlreadyTerminalException, DomainException
from src.escalation.domain.value_objects import (
    EscalationStep,
    EscalationTimer,
    PolicySnapshot,
    StepKind,
)


@dataclass(frozen=True)
class AlertEvent:
    """
    Something that needs a human: a tolerance breach or an overdue incident.

    ``alert_id`` is the escalation identity; at most one active execution
    exists per alert id.
    """
    alert_id: str
    title: str
    source: AlertSource
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_metric(cls, metric_id: str, title: str, reason: str, **details: Any) -> "AlertEvent":
        return cls(
            alert_id=f"metric:{metric_id}",
            title=title,
            source=AlertSource.BREACH,
            reason=reason,
            details=details,
        )

    @classmethod
    def for_incident(cls, incident_id: str, title: str, reason: str, **details: Any) -> "AlertEvent":
        return cls(
            alert_id=f"incident:{incident_id}",
            title=title,
            source=AlertSource.SLA,
            reason=reason,
            details=details,
        )


@dataclass(frozen=True)
class ExecutionLogEntry:
    """Audit entry for one action taken on an execution."""
    timestamp: datetime
    level: int
    action: str
    status: str = "success"
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "action": self.action,
            "status": self.status,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutionLogEntry":
        timestamp = datetime.fromisoformat(data["timestamp"])
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return cls(
            timestamp=timestamp,
            level=data["level"],
            action=data["action"],
            status=data.get("status", "success"),
            details=data.get("details", {}),
        )


@dataclass
class EscalationExecution:
    """
    Live progress of one alert through its policy's levels.

    ``version`` increases on every persisted change; repositories only
    apply an update when the stored version still matches, which makes
    each execution single-writer without a lock.
    """

    id: Optional[str]
    alert_id: str
    alert_title: str
    alert_source: AlertSource
    policy_id: str
    policy_snapshot: PolicySnapshot
    current_level: int
    escalation_reason: str
    escalated_at: datetime
    last_level_notified_at: datetime

    status: ExecutionStatus = ExecutionStatus.ACTIVE
    notification_count: int = 0
    resolved_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    assigned_to: Optional[str] = None
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    version: int = 0
    execution_log: List[ExecutionLogEntry] = field(default_factory=list)

    @classmethod
    def start(
        cls,
        alert: AlertEvent,
        policy_id: str,
        snapshot: PolicySnapshot,
        now: datetime,
        execution_id: Optional[str] = None,
    ) -> "EscalationExecution":
        """Create an execution at the policy's first level."""
        first = snapshot.first_level
        execution = cls(
            id=execution_id,
            alert_id=alert.alert_id,
            alert_title=alert.title,
            alert_source=alert.source,
            policy_id=policy_id,
            policy_snapshot=snapshot,
            current_level=first.level,
            escalation_reason=alert.reason,
            escalated_at=now,
            last_level_notified_at=now,
            notification_count=1,
        )
        execution._log(now, "escalation_started", {"policy_id": policy_id, "reason": alert.reason})
        return execution

    # ========== State ==========

    @property
    def is_active(self) -> bool:
        return self.status == ExecutionStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return not self.is_active

    @property
    def is_acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    @property
    def is_at_last_level(self) -> bool:
        return self.current_level == self.policy_snapshot.max_level

    def next_step(self) -> Optional[EscalationStep]:
        """The pending transition, or None when the timer has nothing left to do."""
        if not self.is_active or self.is_acknowledged:
            return None
        return EscalationTimer.next_step(
            self.policy_snapshot,
            self.current_level,
            self.escalated_at,
            self.last_level_notified_at,
        )

    @property
    def next_due_at(self) -> Optional[datetime]:
        step = self.next_step()
        return step.due_at if step else None

    def due_step(self, now: datetime) -> Optional[EscalationStep]:
        """The pending transition if it is due at ``now``."""
        step = self.next_step()
        if step is None or now < step.due_at:
            return None
        return step

    # ========== Transitions ==========

    def apply_step(self, step: EscalationStep, now: datetime) -> None:
        """
        Apply a due timer transition.

        Level never decreases and never passes the snapshot's last level.
        """
        self._ensure_active()
        if step.kind == StepKind.ADVANCE:
            if step.level.level <= self.current_level:
                raise DomainException(
                    "escalation level cannot move backwards",
                    {"current_level": self.current_level, "target_level": step.level.level}
                )
            previous = self.current_level
            self.current_level = step.level.level
            self._log(now, "level_advanced", {"from_level": previous})
        else:
            self._log(now, "level_repeated", {"notification": self.notification_count + 1})

        self.last_level_notified_at = now
        self.notification_count += 1

    def resolve(self, now: datetime, resolved_by: Optional[str] = None) -> None:
        self._ensure_active()
        self.status = ExecutionStatus.RESOLVED
        self.resolved_at = now
        self._log(now, "resolved", {"resolved_by": resolved_by} if resolved_by else {})

    def cancel(self, now: datetime, reason: Optional[str] = None) -> None:
        self._ensure_active()
        self.status = ExecutionStatus.CANCELLED
        self.cancelled_at = now
        self.cancel_reason = reason
        self._log(now, "cancelled", {"reason": reason} if reason else {})

    def assign(self, user_id: str, now: datetime) -> None:
        self._ensure_active()
        self.assigned_to = user_id
        self._log(now, "assigned", {"assigned_to": user_id})

    def acknowledge(self, user_id: str, now: datetime) -> None:
        """
        Stop further escalation for this alert.

        At the last level there is nobody left to escalate to, so the
        acknowledgment also closes the execution.
        """
        self._ensure_active()
        if self.is_acknowledged:
            raise AlreadyAcknowledgedException("EscalationExecution", str(self.id), self.acknowledged_by)
        self.acknowledged_by = user_id
        self.acknowledged_at = now
        self._log(now, "acknowledged", {"acknowledged_by": user_id})
        if self.is_at_last_level:
            self.resolve(now, resolved_by=user_id)

    # ========== Helpers ==========

    def _ensure_active(self) -> None:
        if self.is_terminal:
            raise AlreadyTerminalException(
                "EscalationExecution", str(self.id), ExecutionStatus(self.status).value
            )

    def _log(
        self,
        now: datetime,
        action: str,
        details: Optional[Dict[str, Any]] = None,
        status: str = "success",
        level: Optional[int] = None,
    ) -> None:
        self.execution_log.append(ExecutionLogEntry(
            timestamp=now,
            level=self.current_level if level is None else level,
            action=action,
            status=status,
            details=details or {},
        ))
