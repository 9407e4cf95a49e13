"""
Escalation Statistics
=====================

Pure aggregation over escalation execution history.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional

from src.config import ExecutionStatus
from src.escalation.domain.entities import EscalationExecution


@dataclass(frozen=True)
class TrendPoint:
    """Escalations started on one calendar day (UTC)."""
    date: date
    escalations: int
    resolved: int
    cancelled: int


@dataclass(frozen=True)
class EscalationSummary:
    total_escalations: int
    active_escalations: int
    resolved_escalations: int
    cancelled_escalations: int
    avg_resolution_hours: Optional[float]
    acknowledgement_rate: float
    escalations_by_status: Dict[str, int] = field(default_factory=dict)
    escalations_by_level: Dict[int, int] = field(default_factory=dict)
    escalation_trends: List[TrendPoint] = field(default_factory=list)


class EscalationStatistics:
    """Stateless aggregation helpers."""

    @staticmethod
    def average_resolution_hours(executions: Iterable[EscalationExecution]) -> Optional[float]:
        """
        Mean ``resolved_at - escalated_at`` over resolved executions, in hours.

        None when nothing in the set has been resolved.
        """
        durations = [
            (e.resolved_at - e.escalated_at).total_seconds() / 3600
            for e in executions
            if e.status == ExecutionStatus.RESOLVED and e.resolved_at is not None
        ]
        if not durations:
            return None
        return sum(durations) / len(durations)

    @staticmethod
    def daily_trend(executions: Iterable[EscalationExecution]) -> List[TrendPoint]:
        """Per-day counts keyed by the date each escalation started, oldest first."""
        started: Counter = Counter()
        resolved: Counter = Counter()
        cancelled: Counter = Counter()

        for execution in executions:
            day = execution.escalated_at.date()
            started[day] += 1
            if execution.status == ExecutionStatus.RESOLVED:
                resolved[day] += 1
            elif execution.status == ExecutionStatus.CANCELLED:
                cancelled[day] += 1

        return [
            TrendPoint(date=day, escalations=started[day], resolved=resolved[day], cancelled=cancelled[day])
            for day in sorted(started)
        ]

    @staticmethod
    def summarize(executions: Iterable[EscalationExecution]) -> EscalationSummary:
        items = list(executions)

        by_status = Counter(ExecutionStatus(e.status).value for e in items)
        by_level = Counter(e.current_level for e in items)
        acknowledged = sum(1 for e in items if e.is_acknowledged)

        return EscalationSummary(
            total_escalations=len(items),
            active_escalations=by_status.get(ExecutionStatus.ACTIVE.value, 0),
            resolved_escalations=by_status.get(ExecutionStatus.RESOLVED.value, 0),
            cancelled_escalations=by_status.get(ExecutionStatus.CANCELLED.value, 0),
            avg_resolution_hours=EscalationStatistics.average_resolution_hours(items),
            acknowledgement_rate=(acknowledged / len(items) * 100) if items else 0.0,
            escalations_by_status=dict(by_status),
            escalations_by_level=dict(sorted(by_level.items())),
            escalation_trends=EscalationStatistics.daily_trend(items),
        )
