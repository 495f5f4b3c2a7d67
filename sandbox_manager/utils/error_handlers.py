"""Global error handlers for the Browser Sandbox Manager."""

# Standard library imports
import traceback
from typing import Optional, Union

# Third-party imports
import structlog
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from fastapi import Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from requests.exceptions import RequestException

# Local application imports
from ..models.errors import (
    SandboxManagerException,
    ContainerRuntimeError,
    ErrorResponse,
    ErrorType,
    ErrorDetail,
    ValidationError,
)
from .id_generator import generate_request_id

logger = structlog.get_logger(__name__)


def _client_ip(request: Request) -> str:
    return getattr(request.client, "host", "unknown") if request.client else "unknown"


async def sandbox_manager_exception_handler(
    request: Request, exc: SandboxManagerException
) -> JSONResponse:
    """Handle SandboxManagerException instances."""

    # Generate request ID if not present
    if not exc.request_id:
        exc.request_id = generate_request_id()

    log_data = {
        "error_type": exc.error_type.value,
        "status_code": exc.status_code,
        "message": exc.message,
        "request_id": exc.request_id,
        "path": request.url.path,
        "method": request.method,
        "client_ip": _client_ip(request),
    }

    if exc.details:
        log_data["details"] = [
            {"field": d.field, "message": d.message, "code": d.code}
            for d in exc.details
        ]

    # Log with appropriate level based on error type
    if exc.status_code >= 500:
        logger.error("Server error occurred", **log_data)
    elif exc.status_code >= 400:
        logger.warning("Client error occurred", **log_data)
    else:
        logger.info("Error handled", **log_data)

    error_response = exc.to_response()
    return JSONResponse(
        status_code=exc.status_code, content=error_response.model_dump()
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPException instances."""

    request_id = generate_request_id()

    # Map HTTP status codes to error types
    error_type_mapping = {
        400: ErrorType.VALIDATION,
        401: ErrorType.AUTHENTICATION,
        404: ErrorType.RESOURCE_NOT_FOUND,
        405: ErrorType.VALIDATION,
        422: ErrorType.VALIDATION,
        500: ErrorType.INTERNAL_SERVER,
        502: ErrorType.EXTERNAL_SERVICE,
        503: ErrorType.SERVICE_UNAVAILABLE,
        504: ErrorType.TIMEOUT,
    }

    error_type = error_type_mapping.get(exc.status_code, ErrorType.INTERNAL_SERVER)

    logger.warning(
        "HTTP exception occurred",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        client_ip=_client_ip(request),
    )

    error_response = ErrorResponse(
        error=str(exc.detail), error_type=error_type, request_id=request_id
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response.model_dump(),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, PydanticValidationError]
) -> JSONResponse:
    """Handle request validation errors as 400 Bad Request."""

    request_id = generate_request_id()

    details = []
    for error in exc.errors():
        field_path = " -> ".join(str(loc) for loc in error["loc"])
        details.append(
            ErrorDetail(field=field_path, message=error["msg"], code=error["type"])
        )

    logger.warning(
        "Validation error occurred",
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        validation_errors=[
            {"field": d.field, "message": d.message, "code": d.code} for d in details
        ],
        client_ip=_client_ip(request),
    )

    error_response = ErrorResponse(
        error="Request validation failed",
        error_type=ErrorType.VALIDATION,
        details=details,
        request_id=request_id,
    )

    return JSONResponse(status_code=400, content=error_response.model_dump())


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""

    request_id = generate_request_id()

    # Log the full exception with traceback
    logger.error(
        "Unexpected exception occurred",
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        exception_type=type(exc).__name__,
        exception_message=str(exc),
        traceback=traceback.format_exc(),
        client_ip=_client_ip(request),
    )

    # Don't expose internal details
    error_response = ErrorResponse(
        error="An unexpected error occurred",
        error_type=ErrorType.INTERNAL_SERVER,
        request_id=request_id,
    )

    return JSONResponse(status_code=500, content=error_response.model_dump())


# Utility functions for common error scenarios


def create_validation_error(
    field: str, message: str, code: str = None
) -> ValidationError:
    """Create a validation error with details."""
    details = [ErrorDetail(field=field, message=message, code=code)]
    return ValidationError(
        message=f"Validation failed for field '{field}': {message}", details=details
    )


def handle_docker_error(
    error: Exception,
    operation: str = "container operation",
    container_id: Optional[str] = None,
) -> ContainerRuntimeError:
    """Convert Docker errors to ContainerRuntimeError."""
    if isinstance(error, ImageNotFound):
        message = f"Sandbox image not found: {error.explanation}"
    elif isinstance(error, NotFound):
        message = f"Container not found during {operation}"
    elif isinstance(error, APIError):
        message = f"Docker API error during {operation}: {error.explanation}"
    elif isinstance(error, RequestException):
        message = f"Docker connection error during {operation}: {str(error)}"
    elif isinstance(error, DockerException):
        message = f"Docker service error during {operation}: {str(error)}"
    else:
        message = f"Unknown Docker error during {operation}: {str(error)}"

    return ContainerRuntimeError(operation, message, container_id=container_id)
