"""Docker implementation of the container runtime interface."""

import asyncio
from typing import Any, Callable, List, Optional

import docker
import structlog
from docker.errors import APIError, DockerException, NotFound
from requests.exceptions import RequestException

from ...config import settings
from ...models import ContainerSpec
from ...models.errors import ContainerRuntimeError, RuntimeTimeoutError
from ...utils.error_handlers import handle_docker_error
from ..interfaces import ContainerRuntimeInterface
from .client import DockerClientFactory

logger = structlog.get_logger(__name__)


class DockerRuntimeClient(ContainerRuntimeInterface):
    """Runs blocking docker-py calls in the executor, each bounded by a timeout.

    Client creation happens inside the same executor call, so a daemon that is
    down or slow never blocks the event loop.
    """

    def __init__(
        self,
        client_factory: Optional[DockerClientFactory] = None,
        call_timeout: Optional[float] = None,
        stop_timeout: Optional[int] = None,
    ):
        self._client_factory = client_factory or DockerClientFactory()
        self.call_timeout = call_timeout or settings.runtime_call_timeout
        self.stop_timeout = stop_timeout if stop_timeout is not None else settings.container_stop_timeout
        self.managed_label = settings.get_managed_label()

    def get_initialization_error(self) -> Optional[str]:
        """Get Docker initialization error if any."""
        return self._client_factory.get_initialization_error()

    async def create(self, spec: ContainerSpec) -> str:
        labels = {self.managed_label: "true", **spec.labels}

        def _create(client: docker.DockerClient) -> str:
            container = client.containers.create(
                image=spec.image,
                name=spec.name,
                tty=spec.tty,
                environment=spec.environment,
                labels=labels,
                ports={f"{container_port}/tcp": host_port for container_port, host_port in spec.port_bindings.items()},
                shm_size=spec.shm_size,
                dns=spec.dns or None,
                security_opt=spec.security_opt or None,
            )
            return container.id

        container_id = await self._call("create", _create)
        logger.info(
            "Created container",
            container_id=container_id,
            name=spec.name,
            ports=spec.host_ports,
        )
        return container_id

    async def start(self, container_id: str) -> None:
        def _start(client: docker.DockerClient) -> None:
            client.containers.get(container_id).start()

        await self._call("start", _start, container_id)
        logger.info("Started container", container_id=container_id)

    async def stop(self, container_id: str) -> None:
        def _stop(client: docker.DockerClient) -> None:
            try:
                client.containers.get(container_id).stop(timeout=self.stop_timeout)
            except NotFound:
                logger.debug("Container already gone on stop", container_id=container_id)

        await self._call("stop", _stop, container_id)

    async def remove(self, container_id: str) -> None:
        def _remove(client: docker.DockerClient) -> bool:
            try:
                client.containers.get(container_id).remove(force=True)
            except NotFound:
                return False
            except APIError as e:
                # Another caller is already removing it
                if e.status_code == 409 and "already in progress" in str(e.explanation or ""):
                    return False
                raise
            return True

        if await self._call("remove", _remove, container_id):
            logger.info("Removed container", container_id=container_id)
        else:
            logger.debug("Container already gone on remove", container_id=container_id)

    async def inspect(self, container_id: str) -> Optional[str]:
        def _inspect(client: docker.DockerClient) -> Optional[str]:
            try:
                return client.containers.get(container_id).status
            except NotFound:
                return None

        return await self._call("inspect", _inspect, container_id)

    async def list_managed(self) -> List[str]:
        def _list(client: docker.DockerClient) -> List[str]:
            containers = client.containers.list(
                all=True, filters={"label": f"{self.managed_label}=true"}
            )
            return [c.id for c in containers]

        return await self._call("list", _list)

    async def ping(self) -> bool:
        # Let health checks pick up a daemon that came back
        self._client_factory.reset_initialization()
        try:
            return bool(await self._call("ping", lambda client: client.ping()))
        except ContainerRuntimeError as e:
            logger.warning("Docker ping failed", error=e.message)
            return False

    def close(self) -> None:
        self._client_factory.close()

    async def _call(
        self,
        operation: str,
        fn: Callable[[docker.DockerClient], Any],
        container_id: Optional[str] = None,
    ) -> Any:
        """Run a blocking docker call off the event loop with a timeout.

        Every failure, including transport errors raised by ``requests``,
        surfaces as ContainerRuntimeError.
        """

        def _run() -> Any:
            client = self._client_factory.get_client()
            if client is None:
                error_msg = "Docker not available"
                if self.get_initialization_error():
                    error_msg += f" - {self.get_initialization_error()}"
                raise ContainerRuntimeError(operation, error_msg, container_id=container_id)
            return fn(client)

        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(loop.run_in_executor(None, _run), timeout=self.call_timeout)
        except asyncio.TimeoutError as e:
            logger.error(
                "Docker call timed out",
                operation=operation,
                container_id=container_id,
                timeout=self.call_timeout,
            )
            raise RuntimeTimeoutError(operation, self.call_timeout, container_id=container_id) from e
        except (DockerException, RequestException) as e:
            logger.error(
                "Docker call failed",
                operation=operation,
                container_id=container_id,
                error=str(e),
            )
            raise handle_docker_error(e, operation, container_id) from e
