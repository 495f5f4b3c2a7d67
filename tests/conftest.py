"""Pytest configuration and shared fixtures."""

import asyncio
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

# Set test environment before importing config
os.environ["API_KEY"] = "test-api-key-for-testing-12345"
os.environ["DEV_MODE"] = "false"
os.environ["STORE_PATH"] = ":memory:"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["PORT_RANGE_START"] = "20000"
os.environ["PORT_RANGE_END"] = "40000"

from sandbox_manager.config.docker import DockerConfig
from sandbox_manager.config.lifecycle import LifecycleConfig
from sandbox_manager.models import ContainerSpec
from sandbox_manager.services.interfaces import ContainerRuntimeInterface
from sandbox_manager.services.lifecycle import LifecycleManager
from sandbox_manager.services.ports import PortAllocator
from sandbox_manager.services.store import SQLiteRecordStore


class FakeRuntime(ContainerRuntimeInterface):
    """In-memory container runtime with failure injection.

    ``fail`` maps an operation name to the exception to raise (or a list of
    exceptions consumed one per call). ``delay`` maps an operation name to
    seconds to sleep before acting.
    """

    def __init__(self):
        self.containers: Dict[str, Dict[str, object]] = {}
        self.calls: Dict[str, List[str]] = {
            "create": [], "start": [], "stop": [], "remove": [], "inspect": [], "list": []
        }
        self.fail: Dict[str, object] = {}
        self.delay: Dict[str, float] = {}
        self.available = True

    async def _enter(self, operation: str, target: str) -> None:
        self.calls[operation].append(target)
        if self.delay.get(operation):
            await asyncio.sleep(self.delay[operation])
        failure = self.fail.get(operation)
        if isinstance(failure, list):
            failure = failure.pop(0) if failure else None
        if failure is not None:
            raise failure

    async def create(self, spec: ContainerSpec) -> str:
        await self._enter("create", spec.name)
        container_id = secrets.token_hex(32)
        self.containers[container_id] = {"spec": spec, "status": "created"}
        return container_id

    async def start(self, container_id: str) -> None:
        await self._enter("start", container_id)
        self.containers[container_id]["status"] = "running"

    async def stop(self, container_id: str) -> None:
        await self._enter("stop", container_id)
        if container_id in self.containers:
            self.containers[container_id]["status"] = "exited"

    async def remove(self, container_id: str) -> None:
        await self._enter("remove", container_id)
        self.containers.pop(container_id, None)
        for cid, info in list(self.containers.items()):
            if info["spec"].name == container_id:
                del self.containers[cid]

    async def inspect(self, container_id: str) -> Optional[str]:
        await self._enter("inspect", container_id)
        info = self.containers.get(container_id)
        return info["status"] if info else None

    async def list_managed(self) -> List[str]:
        await self._enter("list", "*")
        return list(self.containers)

    async def ping(self) -> bool:
        return self.available

    def close(self) -> None:
        pass

    def add_container(self, container_id: str, name: str = "orphan", status: str = "running"):
        """Place a container in the runtime without going through create()."""
        spec = ContainerSpec(name=name, image="test", port_bindings={})
        self.containers[container_id] = {"spec": spec, "status": status}


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def fake_runtime():
    """Fake container runtime."""
    return FakeRuntime()


@pytest.fixture
def fake_clock():
    """Settable clock."""
    return FakeClock()


@pytest.fixture
def lifecycle_config():
    """Lifecycle configuration with short retry backoff."""
    return LifecycleConfig(
        default_ttl_seconds=3600,
        max_ttl_seconds=86400,
        default_port_count=2,
        max_port_count=8,
        runtime_call_timeout=5.0,
        expiry_max_retries=2,
        expiry_retry_backoff_seconds=0.01,
        expiry_check_interval_seconds=0.02,
        reconcile_remove_orphans=True,
        store_path=":memory:",
    )


@pytest.fixture
def docker_config():
    """Docker configuration used to build container specs."""
    return DockerConfig()


@pytest.fixture
def port_allocator():
    """Allocator over a high port range."""
    return PortAllocator(range_start=20000, range_end=40000, probe_attempts=50, bind_host="127.0.0.1")


@pytest_asyncio.fixture
async def record_store():
    """Open in-memory record store."""
    store = SQLiteRecordStore(":memory:")
    await store.start()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def lifecycle_manager(record_store, fake_runtime, port_allocator, lifecycle_config, docker_config):
    """Started lifecycle manager over the fake runtime and in-memory store."""
    manager = LifecycleManager(
        record_store,
        fake_runtime,
        port_allocator,
        lifecycle_config=lifecycle_config,
        docker_config=docker_config,
    )
    await manager.start()
    yield manager
    await manager.shutdown()
