"""Error models and exception classes for the Browser Sandbox Manager."""

import time
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


class ErrorType(str, Enum):
    """Error type enumeration."""

    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    RESOURCE_NOT_FOUND = "resource_not_found"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    TIMEOUT = "timeout"
    STORAGE = "storage"
    INTERNAL_SERVER = "internal_server"
    SERVICE_UNAVAILABLE = "service_unavailable"
    EXTERNAL_SERVICE = "external_service"


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: Optional[str] = Field(None, description="Field name for validation errors")
    message: str = Field(..., description="Human-readable error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")


class ErrorResponse(BaseModel):
    """Standardized error response model."""

    model_config = ConfigDict(use_enum_values=True)

    error: str = Field(..., description="Main error message")
    error_type: ErrorType = Field(..., description="Error category")
    details: Optional[List[ErrorDetail]] = Field(
        None, description="Additional error details"
    )
    request_id: Optional[str] = Field(
        None, description="Request identifier for tracking"
    )
    timestamp: float = Field(default_factory=time.time, description="Error timestamp")


# Custom Exception Classes


class SandboxManagerException(Exception):
    """Base exception for the Browser Sandbox Manager."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL_SERVER,
        status_code: int = 500,
        details: Optional[List[ErrorDetail]] = None,
        request_id: Optional[str] = None,
    ):
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        self.details = details or []
        self.request_id = request_id
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to error response model."""
        return ErrorResponse(
            error=self.message,
            error_type=self.error_type,
            details=self.details if self.details else None,
            request_id=self.request_id,
        )


class AuthenticationError(SandboxManagerException):
    """Authentication related errors."""

    def __init__(self, message: str = "Authentication failed", **kwargs):
        super().__init__(
            message=message,
            error_type=ErrorType.AUTHENTICATION,
            status_code=401,
            **kwargs,
        )


class ValidationError(SandboxManagerException):
    """Request validation errors."""

    def __init__(self, message: str = "Validation failed", **kwargs):
        super().__init__(
            message=message, error_type=ErrorType.VALIDATION, status_code=400, **kwargs
        )


class ResourceNotFoundError(SandboxManagerException):
    """Resource not found errors."""

    def __init__(self, resource: str, resource_id: str = None, **kwargs):
        message = f"{resource} not found"
        if resource_id:
            message += f": {resource_id}"
        super().__init__(
            message=message,
            error_type=ErrorType.RESOURCE_NOT_FOUND,
            status_code=404,
            **kwargs,
        )


class ContainerNotFoundError(ResourceNotFoundError):
    """No active record exists for the container id."""

    def __init__(self, container_id: str, **kwargs):
        self.container_id = container_id
        super().__init__(resource="Container", resource_id=container_id, **kwargs)


class AllocationExhaustedError(SandboxManagerException):
    """No free host port could be found within the probe budget."""

    def __init__(self, requested: int, attempts: int, **kwargs):
        self.requested = requested
        self.attempts = attempts
        super().__init__(
            message=f"Could not allocate {requested} free port(s) after {attempts} probe attempts",
            error_type=ErrorType.RESOURCE_EXHAUSTED,
            status_code=500,
            **kwargs,
        )


class ContainerRuntimeError(SandboxManagerException):
    """Container runtime call failed."""

    def __init__(
        self,
        operation: str,
        message: str = None,
        container_id: str = None,
        error_type: ErrorType = ErrorType.EXTERNAL_SERVICE,
        **kwargs,
    ):
        self.operation = operation
        self.container_id = container_id
        super().__init__(
            message=message or f"Container runtime {operation} failed",
            error_type=error_type,
            status_code=500,
            **kwargs,
        )


class RuntimeTimeoutError(ContainerRuntimeError):
    """Container runtime call exceeded its timeout."""

    def __init__(self, operation: str, timeout: float, container_id: str = None, **kwargs):
        self.timeout = timeout
        super().__init__(
            operation=operation,
            message=f"Container runtime {operation} timed out after {timeout:g} seconds",
            container_id=container_id,
            error_type=ErrorType.TIMEOUT,
            **kwargs,
        )


class StoreError(SandboxManagerException):
    """Persistent record store failure."""

    def __init__(self, operation: str, message: str = None, **kwargs):
        self.operation = operation
        super().__init__(
            message=message or f"Record store {operation} failed",
            error_type=ErrorType.STORAGE,
            status_code=500,
            **kwargs,
        )


class ServiceUnavailableError(SandboxManagerException):
    """Service unavailable errors."""

    def __init__(self, service: str, message: str = None, **kwargs):
        error_message = message or f"{service} service is currently unavailable"
        super().__init__(
            message=error_message,
            error_type=ErrorType.SERVICE_UNAVAILABLE,
            status_code=503,
            **kwargs,
        )


def error_context(exc: Exception) -> Dict[str, Any]:
    """Structured log fields for an exception."""
    context: Dict[str, Any] = {"error": str(exc), "error_class": type(exc).__name__}
    if isinstance(exc, SandboxManagerException):
        context["error_type"] = exc.error_type.value
    return context
