"""
Escalation Application DTOs
============================

Data Transfer Objects for the escalation API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from src.escalation.domain import (
    EscalationExecution,
    EscalationLevel,
    EscalationPolicy,
    EscalationSummary,
)


# ========== Type Aliases for Literals ==========
ExecutionStatusStr = Literal["active", "resolved", "cancelled"]
AlertSourceStr = Literal["breach", "sla"]


# ========== Request DTOs ==========

class EscalationLevelDTO(BaseModel):
    """One level of a policy."""
    level: int = Field(..., ge=1, description="Escalation level (1-based)")
    delay_minutes: int = Field(..., ge=0, description="Minutes after escalation start")
    recipients: List[str] = Field(default_factory=list, description="Addresses to notify")

    def to_domain(self) -> EscalationLevel:
        return EscalationLevel(
            level=self.level,
            delay_minutes=self.delay_minutes,
            recipients=tuple(self.recipients),
        )


class PolicyCreateRequest(BaseModel):
    """Request model for creating an escalation policy."""
    id: str = Field(..., min_length=1, max_length=100, description="Policy id")
    policy_name: str = Field(..., min_length=1, description="Display name")
    description: str = Field(default="")
    levels: List[EscalationLevelDTO] = Field(..., min_length=1)
    repeat_interval_minutes: Optional[int] = Field(
        None, ge=0, description="Re-notify interval at the last level; 0 disables"
    )
    is_active: bool = True

    def to_domain(self, policy_id: Optional[str] = None) -> EscalationPolicy:
        return EscalationPolicy(
            id=policy_id or self.id,
            policy_name=self.policy_name,
            description=self.description,
            levels=tuple(level.to_domain() for level in self.levels),
            repeat_interval_minutes=self.repeat_interval_minutes,
            is_active=self.is_active,
        )


class PolicyUpdateRequest(BaseModel):
    """Request model for replacing an escalation policy."""
    policy_name: str = Field(..., min_length=1)
    description: str = Field(default="")
    levels: List[EscalationLevelDTO] = Field(..., min_length=1)
    repeat_interval_minutes: Optional[int] = Field(None, ge=0)
    is_active: bool = True

    def to_domain(self, policy_id: str) -> EscalationPolicy:
        return EscalationPolicy(
            id=policy_id,
            policy_name=self.policy_name,
            description=self.description,
            levels=tuple(level.to_domain() for level in self.levels),
            repeat_interval_minutes=self.repeat_interval_minutes,
            is_active=self.is_active,
        )


class ResolveRequest(BaseModel):
    resolved_by: Optional[str] = Field(None, description="User resolving the escalation")


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, description="Why the alert is being cancelled")


class AssignRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class AcknowledgeRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


# ========== Response DTOs ==========

class PolicyResponse(BaseModel):
    """Response model for an escalation policy."""
    id: str
    policy_name: str
    description: str
    levels: List[EscalationLevelDTO]
    repeat_interval_minutes: Optional[int]
    is_active: bool

    @classmethod
    def from_domain(cls, policy: EscalationPolicy) -> "PolicyResponse":
        return cls(
            id=policy.id,
            policy_name=policy.policy_name,
            description=policy.description,
            levels=[EscalationLevelDTO(**level.to_dict()) for level in policy.levels],
            repeat_interval_minutes=policy.repeat_interval_minutes,
            is_active=policy.is_active,
        )


class ExecutionLogResponse(BaseModel):
    timestamp: datetime
    level: int
    action: str
    status: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ExecutionResponse(BaseModel):
    """Response model for an escalation execution."""
    id: str
    alert_id: str
    alert_title: str
    alert_source: AlertSourceStr
    policy_id: str
    current_level: int
    max_level: int
    escalation_reason: str
    status: ExecutionStatusStr
    escalated_at: datetime
    last_level_notified_at: datetime
    next_escalation_at: Optional[datetime] = Field(
        None, description="When the timer next fires; null once halted"
    )
    notification_count: int
    resolved_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    assigned_to: Optional[str] = None
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    execution_log: List[ExecutionLogResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, execution: EscalationExecution) -> "ExecutionResponse":
        return cls(
            id=execution.id,
            alert_id=execution.alert_id,
            alert_title=execution.alert_title,
            alert_source=execution.alert_source,
            policy_id=execution.policy_id,
            current_level=execution.current_level,
            max_level=execution.policy_snapshot.max_level,
            escalation_reason=execution.escalation_reason,
            status=execution.status,
            escalated_at=execution.escalated_at,
            last_level_notified_at=execution.last_level_notified_at,
            next_escalation_at=execution.next_due_at,
            notification_count=execution.notification_count,
            resolved_at=execution.resolved_at,
            cancelled_at=execution.cancelled_at,
            cancel_reason=execution.cancel_reason,
            assigned_to=execution.assigned_to,
            acknowledged_by=execution.acknowledged_by,
            acknowledged_at=execution.acknowledged_at,
            execution_log=[ExecutionLogResponse(**entry.to_dict()) for entry in execution.execution_log],
        )


class ExecutionListResponse(BaseModel):
    executions: List[ExecutionResponse]
    total_count: int


class TickResponse(BaseModel):
    """Result of one escalation timer pass."""
    evaluated: int
    advanced: int
    repeated: int
    conflicts: int
    failed: int
    errors: List[str] = Field(default_factory=list)


class TrendPointResponse(BaseModel):
    date: date
    escalations: int
    resolved: int
    cancelled: int


class EscalationSummaryResponse(BaseModel):
    """Response model for the escalation report."""
    total_escalations: int
    active_escalations: int
    resolved_escalations: int
    cancelled_escalations: int
    avg_resolution_hours: Optional[float] = Field(
        None, description="Mean resolved_at - escalated_at; null when nothing resolved"
    )
    acknowledgement_rate: float = Field(..., description="Percentage of executions acknowledged")
    escalations_by_status: Dict[str, int]
    escalations_by_level: Dict[int, int]
    escalation_trends: List[TrendPointResponse]

    @classmethod
    def from_domain(cls, summary: EscalationSummary) -> "EscalationSummaryResponse":
        return cls(
            total_escalations=summary.total_escalations,
            active_escalations=summary.active_escalations,
            resolved_escalations=summary.resolved_escalations,
            cancelled_escalations=summary.cancelled_escalations,
            avg_resolution_hours=(
                round(summary.avg_resolution_hours, 2)
                if summary.avg_resolution_hours is not None else None
            ),
            acknowledgement_rate=round(summary.acknowledgement_rate, 2),
            escalations_by_status=summary.escalations_by_status,
            escalations_by_level=summary.escalations_by_level,
            escalation_trends=[
                TrendPointResponse(
                    date=point.date,
                    escalations=point.escalations,
                    resolved=point.resolved,
                    cancelled=point.cancelled,
                )
                for point in summary.escalation_trends
            ],
        )
