"""Dependencies package for the Browser Sandbox Manager."""

from .services import get_lifecycle_manager, LifecycleManagerDep

__all__ = ["get_lifecycle_manager", "LifecycleManagerDep"]
