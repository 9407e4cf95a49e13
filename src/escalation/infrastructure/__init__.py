"""
Escalation Infrastructure Layer
================================

Infrastructure implementations for the escalation engine:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
- External: config watcher, notification webhook, scheduler
"""

from src.escalation.infrastructure.external import (
    CircuitBreaker,
    CircuitState,
    EscalationConfigManager,
    EscalationScheduler,
    LoggingNotificationSender,
    WebhookNotificationSender,
)
from src.escalation.infrastructure.models import EscalationExecutionModel, EscalationPolicyModel
from src.escalation.infrastructure.repositories import (
    SQLAlchemyEscalationExecutionRepository,
    SQLAlchemyEscalationPolicyRepository,
)

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "EscalationConfigManager",
    "EscalationScheduler",
    "LoggingNotificationSender",
    "WebhookNotificationSender",
    "EscalationExecutionModel",
    "EscalationPolicyModel",
    "SQLAlchemyEscalationExecutionRepository",
    "SQLAlchemyEscalationPolicyRepository",
]
