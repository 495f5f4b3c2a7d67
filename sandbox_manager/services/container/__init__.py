"""Container runtime services.

This package provides Docker access split into:
- client.py: Docker client factory and initialization
- runtime.py: runtime interface implementation (create/start/stop/remove/inspect)
"""

from .client import DockerClientFactory
from .runtime import DockerRuntimeClient

__all__ = ["DockerClientFactory", "DockerRuntimeClient"]
