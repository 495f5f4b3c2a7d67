"""Service dependency injection for the Browser Sandbox Manager."""

# Standard library imports
from typing import Annotated

# Third-party imports
from fastapi import Depends, Request
import structlog

# Local application imports
from ..models.errors import ServiceUnavailableError
from ..services.lifecycle import LifecycleManager

logger = structlog.get_logger(__name__)


def get_lifecycle_manager(request: Request) -> LifecycleManager:
    """Get the lifecycle manager created by the application lifespan.

    Raises:
        ServiceUnavailableError: startup reconciliation has not finished, or
            the service is shutting down
    """
    manager = getattr(request.app.state, "lifecycle_manager", None)
    if manager is None or not manager.is_ready:
        raise ServiceUnavailableError(
            "Lifecycle manager", "Container lifecycle manager is not ready"
        )
    return manager


# Type aliases for dependency injection
LifecycleManagerDep = Annotated[LifecycleManager, Depends(get_lifecycle_manager)]
