"""Exception hierarchy for the database services manager.

This module provides an exception hierarchy that:
1. Categorizes errors by kind (validation, not-found, precondition, engine)
2. Supports automatic HTTP status code mapping
3. Enables structured error responses
"""

from __future__ import annotations

from typing import Any


class DbServicesError(Exception):
    """Base exception for all application-specific errors."""

    default_message: str = "An unexpected error occurred"
    default_error_code: str = "INTERNAL_ERROR"
    default_status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        *,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        self.status_code = status_code or self.default_status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "code": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# Validation Errors (400)
class ValidationError(DbServicesError):
    default_message = "Validation failed"
    default_error_code = "VALIDATION_ERROR"
    default_status_code = 400


class InvalidInputError(ValidationError):
    default_message = "Invalid input provided"
    default_error_code = "INVALID_INPUT"

    def __init__(
        self,
        message: str | None = None,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if field:
            details["field"] = field
        if value is not None:
            str_value = str(value)
            details["value"] = str_value[:100] if len(str_value) > 100 else str_value
        if constraint:
            details["constraint"] = constraint
        super().__init__(message, details=details, **kwargs)


# Not Found Errors (404)
class NotFoundError(DbServicesError):
    default_message = "Resource not found"
    default_error_code = "NOT_FOUND"
    default_status_code = 404


class ServiceNotFoundError(NotFoundError):
    default_error_code = "SERVICE_NOT_FOUND"

    def __init__(self, container_id: str, message: str | None = None, **kwargs: Any) -> None:
        if message is None:
            message = f"service not found: {container_id}"
        self.container_id = container_id
        details = kwargs.pop("details", {}) or {}
        details["container_id"] = container_id
        super().__init__(message, details=details, **kwargs)


# Precondition Errors (412)
class PreconditionFailedError(DbServicesError):
    default_message = "A precondition for this operation is not met"
    default_error_code = "PRECONDITION_FAILED"
    default_status_code = 412


class NoProviderError(PreconditionFailedError):
    default_message = "No started podman provider found"
    default_error_code = "NO_PROVIDER"


class NoEngineError(PreconditionFailedError):
    default_message = "No container engine found for the selected provider"
    default_error_code = "NO_ENGINE"

    def __init__(
        self,
        message: str | None = None,
        *,
        provider: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {}) or {}
        if provider:
            details["provider"] = provider
        super().__init__(message, details=details, **kwargs)


# External Service Errors (503)
class ExternalServiceError(DbServicesError):
    default_message = "External service temporarily unavailable"
    default_error_code = "SERVICE_UNAVAILABLE"
    default_status_code = 503

    def __init__(
        self,
        message: str | None = None,
        *,
        service_name: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.service_name = service_name
        details = kwargs.pop("details", {}) or {}
        if service_name:
            details["service"] = service_name
        super().__init__(message, details=details, **kwargs)


class ContainerEngineError(ExternalServiceError):
    """Raised when a call to the container engine fails.

    The failing operation (``list_containers``, ``pull_image``, ``create_pod``...)
    is kept in ``operation`` and in the structured details.
    """

    default_message = "Container engine call failed"
    default_error_code = "CONTAINER_ENGINE_ERROR"

    def __init__(
        self,
        message: str | None = None,
        *,
        operation: str | None = None,
        engine_id: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.operation = operation
        self.engine_id = engine_id
        details = kwargs.pop("details", {}) or {}
        if operation:
            details["operation"] = operation
        if engine_id:
            details["engine_id"] = engine_id
        super().__init__(message, service_name="container-engine", details=details, **kwargs)


class ContainerNotFoundError(ContainerEngineError):
    default_message = "Container not found in the engine"
    default_error_code = "CONTAINER_NOT_FOUND"
    default_status_code = 404

    def __init__(self, container_id: str, message: str | None = None, **kwargs: Any) -> None:
        self.container_id = container_id
        details = kwargs.pop("details", {}) or {}
        details["container_id"] = container_id
        super().__init__(
            message or f"Container '{container_id}' not found", details=details, **kwargs
        )


class TransportError(ExternalServiceError):
    default_message = "Failed to deliver state to the UI"
    default_error_code = "TRANSPORT_ERROR"
