"""Data models for the Browser Sandbox Manager."""

from .container import (
    ContainerState,
    DELETABLE_STATES,
    ContainerRecord,
    ContainerSpec,
    ReconcileSummary,
    CreateContainerRequest,
    CreateContainerResponse,
    ContainerInfo,
    DeleteContainerResponse,
)
from .errors import (
    ErrorType,
    ErrorDetail,
    ErrorResponse,
    SandboxManagerException,
    AuthenticationError,
    ValidationError,
    ResourceNotFoundError,
    ContainerNotFoundError,
    AllocationExhaustedError,
    ContainerRuntimeError,
    RuntimeTimeoutError,
    StoreError,
    ServiceUnavailableError,
)

__all__ = [
    # Container models
    "ContainerState",
    "DELETABLE_STATES",
    "ContainerRecord",
    "ContainerSpec",
    "ReconcileSummary",
    "CreateContainerRequest",
    "CreateContainerResponse",
    "ContainerInfo",
    "DeleteContainerResponse",
    # Error models
    "ErrorType",
    "ErrorDetail",
    "ErrorResponse",
    "SandboxManagerException",
    "AuthenticationError",
    "ValidationError",
    "ResourceNotFoundError",
    "ContainerNotFoundError",
    "AllocationExhaustedError",
    "ContainerRuntimeError",
    "RuntimeTimeoutError",
    "StoreError",
    "ServiceUnavailableError",
]
