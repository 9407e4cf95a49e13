"""
Breachwatch - Main Application
===============================

Threshold breach detection and tiered escalation service.

Modules:
- Tolerance Monitoring: Classify metric readings and raise breach notifications
- Escalation: Policies, the escalation state machine and reporting
- SLA Monitoring: Scan overdue incidents into the escalation engine

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, notification channels, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from src.config import settings
from src.core import StoreUnavailableException

# Infrastructure
from src.infrastructure.database import close_database, create_tables, get_session_context, init_database

# Escalation Module - External services
from src.escalation.application import EscalationPolicyService, NotificationDispatcher
from src.escalation.infrastructure import (
    EscalationConfigManager,
    EscalationScheduler,
    LoggingNotificationSender,
    SQLAlchemyEscalationPolicyRepository,
    WebhookNotificationSender,
)
from src.escalation.interfaces.dependencies import build_escalation_engine
from src.sla.application import SLAScanService
from src.sla.infrastructure import SQLAlchemyIncidentRepository
from src.tolerance.application import BreachNotificationService, MetricLockRegistry
from src.tolerance.infrastructure import SQLAlchemyBreachNotificationRepository, SQLAlchemyMetricRepository

# Module Routers
from src.escalation.interfaces import router as escalation_router
from src.sla.interfaces import router as sla_router
from src.tolerance.interfaces import router as tolerance_router

# Logging and edge error handling
from src.shared.api.middleware import CorrelationIDMiddleware, LoggingMiddleware, install_exception_handlers
from src.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


def build_notification_sender():
    """Webhook relay when configured, otherwise log-only delivery."""
    if settings.notification_webhook_url:
        return WebhookNotificationSender(
            settings.notification_webhook_url,
            timeout_seconds=settings.notification_timeout_seconds,
            max_retries=settings.notification_max_retries,
        )
    logger.warning("No notification webhook configured - notifications will only be logged")
    return LoggingNotificationSender()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load escalation configuration and seed its policies
    4. Build the notification channel and dispatcher
    5. Start the escalation tick, SLA scan and delivery jobs

    SHUTDOWN:
    1. Stop the scheduler
    2. Wait for in-flight notifications, close the channel
    3. Stop the config watcher and close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Breachwatch", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()
    await create_tables()

    logger.info("Loading escalation configuration")
    config_manager = EscalationConfigManager()
    config_manager.load(settings.escalation_config_path)
    config_manager.start_watching()

    async with get_session_context() as session:
        seeded = await EscalationPolicyService(SQLAlchemyEscalationPolicyRepository(session)).seed(
            config_manager.get_config()
        )
    logger.info("Escalation policies seeded", extra={"created": seeded})

    sender = build_notification_sender()
    dispatcher = NotificationDispatcher(sender)

    app.state.config_manager = config_manager
    app.state.dispatcher = dispatcher
    app.state.notification_sender = sender
    app.state.metric_locks = MetricLockRegistry()

    async def escalation_tick_job():
        """Advance every execution whose level timer has expired."""
        try:
            async with get_session_context() as session:
                engine = build_escalation_engine(session, dispatcher, config_manager)
                await engine.process_due()
        except StoreUnavailableException as e:
            logger.warning("Escalation tick aborted", extra={"error": e.message, **e.details})

    async def sla_scan_job():
        """Escalate overdue incidents."""
        try:
            async with get_session_context() as session:
                scanner = SLAScanService(
                    SQLAlchemyIncidentRepository(session),
                    build_escalation_engine(session, dispatcher, config_manager),
                    config_manager,
                    commit=session.commit,
                )
                await scanner.run_scan()
        except StoreUnavailableException as e:
            logger.warning("SLA scan aborted", extra={"error": e.message, **e.details})

    async def breach_delivery_job():
        """Send breach notifications that have not gone out yet."""
        async with get_session_context() as session:
            service = BreachNotificationService(
                SQLAlchemyBreachNotificationRepository(session),
                SQLAlchemyMetricRepository(session),
            )
            await service.dispatch_pending(sender, config_manager.get_config().breach_recipients)

    scheduler = EscalationScheduler()
    if settings.scheduler_enabled:
        scheduler.add_job("escalation_tick", escalation_tick_job, settings.escalation_tick_interval)
        scheduler.add_job("sla_scan", sla_scan_job, settings.sla_scan_interval)
        scheduler.add_job("breach_notification_delivery", breach_delivery_job, settings.notification_delivery_interval)
        await scheduler.start()
    app.state.scheduler = scheduler

    logger.info("Breachwatch started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Breachwatch")

    await scheduler.stop()

    results = await dispatcher.drain()
    if results:
        logger.info("Drained pending notifications", extra={"count": len(results)})
    await sender.close()

    config_manager.stop_watching()
    await close_database()

    logger.info("Breachwatch shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Breachwatch API",
    description="""
    ## Threshold Breach Detection and Tiered Escalation

    ### Tolerance Monitoring
    - `POST /tolerance/metrics` - Define a metric and its tolerance band
    - `POST /tolerance/metrics/{id}/readings` - Ingest and classify a reading
    - `PUT /tolerance/metrics/{id}/band` - Edit the band and reclassify
    - `GET /tolerance/notifications` - Breach notifications
    - `POST /tolerance/notifications/{id}/acknowledge` - Acknowledge a breach

    ### Escalation
    - `GET|POST /escalation/policies` - Escalation policies
    - `GET /escalation/executions` - Escalations in flight and history
    - `POST /escalation/executions/{id}/resolve|cancel|assign|acknowledge`
    - `POST /escalation/tick` - Evaluate due escalation timers
    - `GET /escalation/reports/summary` - Escalation reporting

    ### SLA Monitoring
    - `POST /sla/incidents` - Record an incident
    - `GET /sla/incidents/overdue` - Incidents past their deadline
    - `POST /sla/scan` - Escalate overdue incidents

    **Classification** (first match wins): `|variance| >= breach` -> breach,
    `|variance| >= warning` -> warning, otherwise within appetite.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
install_exception_handlers(app)

# === Include Module Routers ===
app.include_router(tolerance_router)
app.include_router(escalation_router)
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "escalation_config": "loaded",
                        "scheduler": "running",
                        "pending_notifications": 0
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Escalation configuration status
    - Scheduler state
    - Notifications still being delivered
    """
    state = request.app.state
    scheduler = getattr(state, "scheduler", None)
    dispatcher = getattr(state, "dispatcher", None)

    checks = {
        "escalation_config": "loaded" if getattr(state, "config_manager", None) else "not_loaded",
        "scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        "pending_notifications": dispatcher.pending if dispatcher else 0,
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Breachwatch",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "tolerance": {"prefix": "/tolerance"},
            "escalation": {"prefix": "/escalation"},
            "sla": {"prefix": "/sla"},
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
