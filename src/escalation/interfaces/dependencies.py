"""
Escalation Dependencies
========================

FastAPI dependency factories shared by every router that starts or
drives escalations.

Process-wide collaborators (config manager, notification dispatcher) are
created once in the application lifespan and read from ``app.state``;
repositories are built per request around the request's session.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.escalation.application import (
    EscalationEngine,
    EscalationPolicyService,
    EscalationReportingService,
    IEscalationConfigProvider,
    NotificationDispatcher,
)
from src.escalation.infrastructure import (
    SQLAlchemyEscalationExecutionRepository,
    SQLAlchemyEscalationPolicyRepository,
)
from src.infrastructure.database import get_session


def get_config_provider(request: Request) -> IEscalationConfigProvider:
    return request.app.state.config_manager


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


def build_escalation_engine(
    session: AsyncSession,
    dispatcher: NotificationDispatcher,
    config_provider: IEscalationConfigProvider,
) -> EscalationEngine:
    """
    Wire an engine around one session; used by routes and scheduled jobs alike.

    Timer passes commit the session before their notifications go out.
    """
    return EscalationEngine(
        SQLAlchemyEscalationExecutionRepository(session),
        SQLAlchemyEscalationPolicyRepository(session),
        dispatcher,
        config_provider=config_provider,
        default_repeat_interval=settings.default_repeat_interval_minutes,
        commit=session.commit,
    )


async def get_escalation_engine(
    session: AsyncSession = Depends(get_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    config_provider: IEscalationConfigProvider = Depends(get_config_provider),
) -> EscalationEngine:
    """Get escalation engine instance."""
    return build_escalation_engine(session, dispatcher, config_provider)


async def get_policy_service(
    session: AsyncSession = Depends(get_session)
) -> EscalationPolicyService:
    """Get policy service instance."""
    return EscalationPolicyService(SQLAlchemyEscalationPolicyRepository(session))


async def get_reporting_service(
    session: AsyncSession = Depends(get_session)
) -> EscalationReportingService:
    """Get reporting service instance."""
    return EscalationReportingService(SQLAlchemyEscalationExecutionRepository(session))
