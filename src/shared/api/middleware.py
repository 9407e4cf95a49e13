"""
Shared API Middleware
======================

Common middleware and exception handlers for the FastAPI application.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from src.core import (
    ApplicationException,
    AlreadyTerminalException,
    ConcurrentModificationException,
    ConfigurationException,
    ResourceNotFoundException,
    StoreUnavailableException,
    ValidationException,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# Most specific first; the first isinstance match wins.
_STATUS_BY_EXCEPTION = (
    (ResourceNotFoundException, status.HTTP_404_NOT_FOUND, "NotFound"),
    (AlreadyTerminalException, status.HTTP_409_CONFLICT, "AlreadyTerminal"),
    (ConcurrentModificationException, status.HTTP_409_CONFLICT, "ConcurrentModification"),
    (ConfigurationException, status.HTTP_422_UNPROCESSABLE_ENTITY, "ConfigurationError"),
    (ValidationException, status.HTTP_422_UNPROCESSABLE_ENTITY, "ValidationError"),
    (StoreUnavailableException, status.HTTP_503_SERVICE_UNAVAILABLE, "StoreUnavailable"),
)


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds correlation ID to requests for tracing.

    Correlation IDs link request logs with the escalation/scan logs they cause.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs all requests and responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = getattr(request.state, "correlation_id", "unknown")
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - start_time) * 1000)
                }
            )
            raise

        logger.info(
            "Request completed",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": int((time.perf_counter() - start_time) * 1000)
            }
        )
        return response


def _error_body(request: Request, error: str, message: str, details: dict) -> dict:
    return {
        "error": error,
        "message": message,
        "details": details,
        "correlation_id": getattr(request.state, "correlation_id", "unknown"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """
    Translate domain/application errors into structured JSON responses.

    Not-found and configuration errors are caller mistakes and are never
    retried; store unavailability is reported as 503 so schedulers retry.
    """
    for exc_type, status_code, error in _STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            break
    else:
        status_code, error = status.HTTP_400_BAD_REQUEST, type(exc).__name__

    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request rejected",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "path": request.url.path,
            "error_type": error,
            "error_message": exc.message,
        }
    )

    return JSONResponse(
        status_code=status_code,
        content=_error_body(request, error, exc.message, exc.details),
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Returns consistent error responses for all exceptions.
    """
    logger.error(
        "Unhandled exception",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error_message": str(exc)
        }
    )

    is_dev = getattr(request.app.state, "environment", None) == "development"
    body = _error_body(request, "InternalError", "Internal server error", {})
    if is_dev:
        body["details"] = {"debug_info": str(exc)}

    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)


def install_exception_handlers(app: FastAPI) -> None:
    """Register the error translation handlers on an application."""
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
