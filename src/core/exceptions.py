"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """
    Exception for configuration errors.

    Raised when a tolerance band or escalation policy is defined with
    values the engine cannot evaluate (non-positive threshold, unordered
    levels). Never raised at evaluation time.
    """


class AlreadyTerminalException(DomainException):
    """Exception when acting on an execution or notification that is already closed."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        state: str,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.state = state
        super().__init__(
            f"{resource_type} '{resource_id}' is already {state}",
            details or {"resource_id": resource_id, "state": state}
        )


class AlreadyAcknowledgedException(AlreadyTerminalException):
    """Exception when a breach notification or execution was already acknowledged."""

    def __init__(self, resource_type: str, resource_id: str, acknowledged_by: Optional[str] = None):
        self.acknowledged_by = acknowledged_by
        super().__init__(
            resource_type,
            resource_id,
            "acknowledged",
            {"resource_id": resource_id, "acknowledged_by": acknowledged_by}
        )


class StoreUnavailableException(RepositoryException):
    """Transient failure reaching the backing store."""


class ConcurrentModificationException(RepositoryException):
    """A conditional update lost the race against another writer."""

    def __init__(self, resource_type: str, resource_id: str, expected_version: int):
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.expected_version = expected_version
        super().__init__(
            f"{resource_type} '{resource_id}' was modified concurrently",
            {"resource_id": resource_id, "expected_version": expected_version}
        )


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class DeliveryException(ExternalServiceException):
    """Exception for notification channel failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notification Channel", message, details)
