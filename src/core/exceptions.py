"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Per-service errors
(UpstreamUnavailable, InvalidServiceReference) are absorbed by the evaluation
cycle; cycle-level errors (ConfigError, DeadlineExceeded) reach the HTTP layer.
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


class ConfigError(ValidationException):
    """Monitoring configuration is malformed or empty. Fatal for the cycle."""


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


class UpstreamUnavailable(ExternalServiceException):
    """
    Metrics provider could not answer.

    Transient unless ``retryable`` is False (e.g. the credentials were
    rejected, which another attempt will not fix).
    """

    def __init__(
        self,
        service_name: str,
        message: str,
        retryable: bool = True,
        details: Optional[dict] = None
    ):
        self.retryable = retryable
        super().__init__(service_name, message, details)


class InvalidServiceReference(ExternalServiceException):
    """The monitored resource no longer exists. Never retried."""


class DeadlineExceeded(DomainException):
    """The cycle deadline elapsed before any service produced a usable result."""

    def __init__(
        self,
        deadline_seconds: float,
        pending: int,
        details: Optional[dict] = None
    ):
        self.deadline_seconds = deadline_seconds
        self.pending = pending
        super().__init__(
            f"Evaluation cycle exceeded {deadline_seconds}s with no usable results",
            details or {"deadline_seconds": deadline_seconds, "pending_services": pending}
        )
