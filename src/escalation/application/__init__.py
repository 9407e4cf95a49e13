"""
Escalation Application Layer
=============================

Contains:
- Services: EscalationEngine, EscalationPolicyService, EscalationReportingService
- Notifications: message rendering and background dispatch
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.escalation.application.dto import (
    AcknowledgeRequest,
    AssignRequest,
    CancelRequest,
    EscalationLevelDTO,
    EscalationSummaryResponse,
    ExecutionListResponse,
    ExecutionResponse,
    PolicyCreateRequest,
    PolicyResponse,
    PolicyUpdateRequest,
    ResolveRequest,
    TickResponse,
)
from src.escalation.application.notifications import (
    INotificationSender,
    NotificationDispatcher,
    NotificationMessage,
    render_escalation_message,
)
from src.escalation.application.services import (
    EscalationEngine,
    EscalationPolicyService,
    EscalationReportingService,
    EscalationStart,
    IEscalationConfigProvider,
    IEscalationExecutionRepository,
    IEscalationPolicyRepository,
    TickSummary,
    utc_now,
)

__all__ = [
    # DTOs
    "AcknowledgeRequest",
    "AssignRequest",
    "CancelRequest",
    "EscalationLevelDTO",
    "EscalationSummaryResponse",
    "ExecutionListResponse",
    "ExecutionResponse",
    "PolicyCreateRequest",
    "PolicyResponse",
    "PolicyUpdateRequest",
    "ResolveRequest",
    "TickResponse",
    # Notifications
    "INotificationSender",
    "NotificationDispatcher",
    "NotificationMessage",
    "render_escalation_message",
    # Services
    "EscalationEngine",
    "EscalationPolicyService",
    "EscalationReportingService",
    "EscalationStart",
    "TickSummary",
    "utc_now",
    # Repository Interfaces
    "IEscalationConfigProvider",
    "IEscalationExecutionRepository",
    "IEscalationPolicyRepository",
]
