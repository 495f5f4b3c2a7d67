"""Docker client factory and initialization."""

import threading
from typing import Optional

import docker
import structlog
from docker.errors import DockerException
from requests.exceptions import RequestException

from ...config import settings

logger = structlog.get_logger(__name__)


class DockerClientFactory:
    """Lazily creates the Docker client.

    Client creation talks to the daemon, so it is only ever triggered from
    executor threads (see DockerRuntimeClient); the lock keeps concurrent
    first calls from building two clients.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[int] = None):
        self.base_url = base_url if base_url is not None else settings.docker_base_url
        self.timeout = timeout or settings.docker_timeout
        self.client: Optional[docker.DockerClient] = None
        self._initialization_error: Optional[str] = None
        self._initialization_attempted: bool = False
        self._lock = threading.Lock()
        logger.info(
            "DockerClientFactory initialized (client will be created on first use)"
        )

    def _ensure_client(self) -> bool:
        """Ensure Docker client is initialized. Returns True if successful."""
        with self._lock:
            if self.client is not None:
                return True

            if self._initialization_attempted and self._initialization_error:
                return False

            try:
                logger.info("Initializing Docker client on first use", base_url=self.base_url or "environment")
                self._initialization_attempted = True

                if self.base_url:
                    self.client = docker.DockerClient(base_url=self.base_url, timeout=self.timeout)
                else:
                    self.client = docker.from_env(timeout=self.timeout)

                version_info = self.client.version()
                logger.info(
                    "Docker connection successful",
                    server_version=version_info.get("ServerVersion", "unknown"),
                )
                self._initialization_error = None
                return True

            except (DockerException, RequestException) as e:
                logger.error("Failed to create Docker client", error=str(e))
                self._initialization_error = str(e)
                self._close_locked()
                return False

    def get_initialization_error(self) -> Optional[str]:
        """Get Docker initialization error if any."""
        return self._initialization_error

    def reset_initialization(self) -> None:
        """Forget a failed initialization so the next call retries. Never blocks on the daemon."""
        with self._lock:
            if not self._initialization_error:
                return
            self._initialization_attempted = False
            self._initialization_error = None
            self._close_locked()
        logger.info("Docker client initialization state reset")

    def get_client(self) -> Optional[docker.DockerClient]:
        """Get the Docker client, creating it if needed. Blocking: call from a worker thread."""
        if self._ensure_client():
            return self.client
        return None

    def close(self):
        """Close Docker client connection."""
        with self._lock:
            self._close_locked()

    def _close_locked(self) -> None:
        try:
            if self.client is not None:
                self.client.close()
        except Exception as e:
            logger.error("Error closing Docker client", error=str(e))
        finally:
            self.client = None
