"""
Escalation Controllers (API Routes)
====================================

FastAPI routes for escalation policies, executions, the timer tick and
reporting.

Controllers are thin - they delegate to application services. Domain
errors propagate to the shared exception handlers.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from src.config import AlertSource, ExecutionStatus
from src.escalation.application import (
    AcknowledgeRequest,
    AssignRequest,
    CancelRequest,
    EscalationEngine,
    EscalationPolicyService,
    EscalationReportingService,
    EscalationSummaryResponse,
    ExecutionListResponse,
    ExecutionResponse,
    PolicyCreateRequest,
    PolicyResponse,
    PolicyUpdateRequest,
    ResolveRequest,
    TickResponse,
)
from src.escalation.interfaces.dependencies import (
    get_escalation_engine,
    get_policy_service,
    get_reporting_service,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/escalation", tags=["Escalation"])


# ========== Example payloads for Swagger ==========

POLICY_EXAMPLE = {
    "id": "kri-default",
    "policy_name": "KRI default escalation",
    "description": "Risk owner, then head of risk, then CRO",
    "levels": [
        {"level": 1, "delay_minutes": 0, "recipients": ["risk-owner@example.com"]},
        {"level": 2, "delay_minutes": 30, "recipients": ["head-of-risk@example.com"]},
        {"level": 3, "delay_minutes": 120, "recipients": ["cro@example.com"]}
    ],
    "repeat_interval_minutes": 60,
    "is_active": True
}

SUMMARY_EXAMPLE = {
    "total_escalations": 12,
    "active_escalations": 3,
    "resolved_escalations": 8,
    "cancelled_escalations": 1,
    "avg_resolution_hours": 1.75,
    "acknowledgement_rate": 66.67,
    "escalations_by_status": {"active": 3, "resolved": 8, "cancelled": 1},
    "escalations_by_level": {"1": 5, "2": 5, "3": 2},
    "escalation_trends": [
        {"date": "2024-01-15", "escalations": 4, "resolved": 3, "cancelled": 0}
    ]
}


# ========== Policies ==========

@router.get(
    "/policies",
    response_model=List[PolicyResponse],
    summary="List escalation policies"
)
async def list_policies(
    active_only: bool = Query(True, description="Only return active policies"),
    policy_service: EscalationPolicyService = Depends(get_policy_service)
):
    policies = await policy_service.list_policies(active_only=active_only)
    return [PolicyResponse.from_domain(policy) for policy in policies]


@router.get(
    "/policies/{policy_id}",
    response_model=PolicyResponse,
    summary="Get an escalation policy",
    responses={404: {"description": "Policy not found"}}
)
async def get_policy(
    policy_id: str,
    policy_service: EscalationPolicyService = Depends(get_policy_service)
):
    return PolicyResponse.from_domain(await policy_service.get_policy(policy_id))


@router.post(
    "/policies",
    response_model=PolicyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an escalation policy",
    description="""
    Create a named policy of ordered escalation levels.

    Levels must be strictly increasing by `level` and by `delay_minutes`;
    delays are measured from the moment an escalation starts.
    """,
    responses={
        201: {"content": {"application/json": {"example": POLICY_EXAMPLE}}},
        422: {"description": "Levels not strictly increasing"}
    }
)
async def create_policy(
    request: PolicyCreateRequest,
    policy_service: EscalationPolicyService = Depends(get_policy_service)
):
    policy = await policy_service.create_policy(request.to_domain())
    return PolicyResponse.from_domain(policy)


@router.put(
    "/policies/{policy_id}",
    response_model=PolicyResponse,
    summary="Replace an escalation policy",
    description="""
    Replace a policy's levels and settings.

    Running escalations keep the level list they started with; the edit
    applies to escalations started afterwards.
    """,
    responses={404: {"description": "Policy not found"}}
)
async def update_policy(
    policy_id: str,
    request: PolicyUpdateRequest,
    policy_service: EscalationPolicyService = Depends(get_policy_service)
):
    policy = await policy_service.update_policy(request.to_domain(policy_id))
    return PolicyResponse.from_domain(policy)


# ========== Executions ==========

@router.get(
    "/executions",
    response_model=ExecutionListResponse,
    summary="List escalation executions"
)
async def list_executions(
    status_filter: Optional[ExecutionStatus] = Query(None, alias="status"),
    alert_source: Optional[AlertSource] = Query(None),
    policy_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    executions = await engine.list_executions(
        status=status_filter,
        alert_source=alert_source,
        policy_id=policy_id,
        limit=limit,
        offset=offset,
    )
    return ExecutionListResponse(
        executions=[ExecutionResponse.from_domain(e) for e in executions],
        total_count=len(executions),
    )


@router.get(
    "/executions/{execution_id}",
    response_model=ExecutionResponse,
    summary="Get an escalation execution",
    responses={404: {"description": "Execution not found"}}
)
async def get_execution(
    execution_id: str,
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    return ExecutionResponse.from_domain(await engine.get_execution(execution_id))


@router.post(
    "/executions/{execution_id}/resolve",
    response_model=ExecutionResponse,
    summary="Resolve an escalation",
    responses={404: {"description": "Execution not found"}, 409: {"description": "Already terminal"}}
)
async def resolve_execution(
    execution_id: str,
    request: Optional[ResolveRequest] = None,
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    resolved_by = request.resolved_by if request else None
    return ExecutionResponse.from_domain(await engine.resolve_execution(execution_id, resolved_by))


@router.post(
    "/executions/{execution_id}/cancel",
    response_model=ExecutionResponse,
    summary="Cancel an escalation (false positive)",
    responses={404: {"description": "Execution not found"}, 409: {"description": "Already terminal"}}
)
async def cancel_execution(
    execution_id: str,
    request: Optional[CancelRequest] = None,
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    reason = request.reason if request else None
    return ExecutionResponse.from_domain(await engine.cancel_execution(execution_id, reason))


@router.post(
    "/executions/{execution_id}/assign",
    response_model=ExecutionResponse,
    summary="Assign an escalation to a user",
    responses={404: {"description": "Execution not found"}, 409: {"description": "Already terminal"}}
)
async def assign_execution(
    execution_id: str,
    request: AssignRequest,
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    return ExecutionResponse.from_domain(await engine.assign_execution(execution_id, request.user_id))


@router.post(
    "/executions/{execution_id}/acknowledge",
    response_model=ExecutionResponse,
    summary="Acknowledge an escalation",
    description="""
    Stop further escalation levels from firing. Acknowledging at the last
    level also resolves the escalation.
    """,
    responses={404: {"description": "Execution not found"}, 409: {"description": "Already terminal or acknowledged"}}
)
async def acknowledge_execution(
    execution_id: str,
    request: AcknowledgeRequest,
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    return ExecutionResponse.from_domain(await engine.acknowledge_execution(execution_id, request.user_id))


# ========== Timer ==========

@router.post(
    "/tick",
    response_model=TickResponse,
    summary="Run one escalation timer pass",
    description="""
    Advance every escalation whose next level is due. Safe to call
    repeatedly: a level that already fired is not fired again.
    Normally run by the in-process scheduler.

    A store failure aborts the pass and returns `503`; nothing from the
    pass is committed or sent.
    """,
    responses={503: {"description": "Store unavailable"}}
)
async def run_tick(
    engine: EscalationEngine = Depends(get_escalation_engine)
):
    summary = await engine.process_due()
    return TickResponse(
        evaluated=summary.evaluated,
        advanced=summary.advanced,
        repeated=summary.repeated,
        conflicts=summary.conflicts,
        failed=summary.failed,
        errors=summary.errors,
    )


# ========== Reporting ==========

@router.get(
    "/reports/summary",
    response_model=EscalationSummaryResponse,
    summary="Escalation summary report",
    description="""
    Counts by status and level, mean time to resolution (hours), the
    acknowledgement rate and a per-day trend for escalations that started
    inside the requested window.
    """,
    responses={200: {"content": {"application/json": {"example": SUMMARY_EXAMPLE}}}}
)
async def get_summary(
    start: Optional[datetime] = Query(None, description="Window start (escalated_at)"),
    end: Optional[datetime] = Query(None, description="Window end (escalated_at)"),
    alert_source: Optional[AlertSource] = Query(None),
    policy_id: Optional[str] = Query(None),
    reporting_service: EscalationReportingService = Depends(get_reporting_service)
):
    summary = await reporting_service.get_summary(
        start=start,
        end=end,
        alert_source=alert_source,
        policy_id=policy_id,
    )
    return EscalationSummaryResponse.from_domain(summary)
