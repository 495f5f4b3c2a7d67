"""Unit tests for the container lifecycle manager."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from requests.exceptions import ConnectionError as RequestsConnectionError

from sandbox_manager.models import ContainerRecord, ContainerState
from sandbox_manager.models.errors import (
    ContainerNotFoundError,
    ContainerRuntimeError,
    RuntimeTimeoutError,
    StoreError,
    ValidationError,
)
from sandbox_manager.services.lifecycle import LifecycleManager


def runtime_error(operation="stop"):
    return ContainerRuntimeError(operation, f"simulated {operation} failure")


def runtime_timeout(operation="create"):
    return RuntimeTimeoutError(operation, 0.1)


@pytest_asyncio.fixture
async def clocked_manager(record_store, fake_runtime, port_allocator, lifecycle_config, docker_config, fake_clock):
    """Lifecycle manager driven by a settable clock; not started."""
    manager = LifecycleManager(
        record_store,
        fake_runtime,
        port_allocator,
        lifecycle_config=lifecycle_config,
        docker_config=docker_config,
        clock=fake_clock,
    )
    yield manager
    await manager.shutdown()


class TestCreateContainer:
    """Tests for create_container."""

    @pytest.mark.asyncio
    async def test_create_provisions_running_container(self, lifecycle_manager, fake_runtime, record_store, port_allocator):
        record = await lifecycle_manager.create_container()

        assert len(record.ports) == 2
        assert record.state == ContainerState.RUNNING
        assert fake_runtime.containers[record.id]["status"] == "running"
        assert await record_store.get(record.id) == record
        assert port_allocator.assigned == set(record.ports)
        assert port_allocator.reserved == set()
        assert lifecycle_manager.scheduler.is_scheduled(record.id)

    @pytest.mark.asyncio
    async def test_create_uses_requested_ttl_and_port_count(self, clocked_manager, fake_clock):
        await clocked_manager.start()

        record = await clocked_manager.create_container(ttl_seconds=120, port_count=3)

        assert len(record.ports) == 3
        assert record.created_at == fake_clock.now
        assert record.expires_at == fake_clock.now + timedelta(seconds=120)

    @pytest.mark.asyncio
    async def test_spec_maps_ports_to_sequential_container_ports(self, lifecycle_manager, fake_runtime):
        record = await lifecycle_manager.create_container(port_count=3)

        spec = fake_runtime.containers[record.id]["spec"]
        assert spec.port_bindings == {3000: record.ports[0], 3001: record.ports[1], 3002: record.ports[2]}
        assert spec.image == "linuxserver/chromium:latest"
        assert spec.name.startswith("chromium-container-")
        assert spec.environment["PUID"] == "1000"
        assert spec.shm_size == "512m"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ttl,ports", [(0, 2), (-5, 2), (10**9, 2), (60, 0), (60, 99)])
    async def test_out_of_range_request_is_rejected(self, lifecycle_manager, fake_runtime, ttl, ports):
        with pytest.raises(ValidationError):
            await lifecycle_manager.create_container(ttl_seconds=ttl, port_count=ports)

        assert fake_runtime.calls["create"] == []

    @pytest.mark.asyncio
    async def test_create_failure_releases_ports(self, lifecycle_manager, fake_runtime, record_store, port_allocator):
        fake_runtime.fail["create"] = runtime_error("create")

        with pytest.raises(ContainerRuntimeError):
            await lifecycle_manager.create_container()

        assert port_allocator.reserved == set()
        assert port_allocator.assigned == set()
        assert await record_store.list_active() == []

    @pytest.mark.asyncio
    async def test_create_timeout_removes_container_by_name(self, lifecycle_manager, fake_runtime, port_allocator):
        fake_runtime.fail["create"] = runtime_timeout("create")

        with pytest.raises(RuntimeTimeoutError):
            await lifecycle_manager.create_container()

        assert fake_runtime.calls["remove"] == fake_runtime.calls["create"]
        assert port_allocator.reserved == set()

    @pytest.mark.asyncio
    async def test_start_failure_removes_container_and_persists_nothing(self, lifecycle_manager, fake_runtime, record_store, port_allocator):
        fake_runtime.fail["start"] = runtime_error("start")

        with pytest.raises(ContainerRuntimeError):
            await lifecycle_manager.create_container()

        assert fake_runtime.containers == {}
        assert len(fake_runtime.calls["remove"]) == 1
        assert await record_store.list_active() == []
        assert port_allocator.reserved == set()
        assert lifecycle_manager.scheduler.pending_count == 0

    @pytest.mark.asyncio
    async def test_ports_released_when_compensating_removal_blows_up(self, lifecycle_manager, fake_runtime, record_store, port_allocator):
        fake_runtime.fail["start"] = runtime_error("start")
        fake_runtime.fail["remove"] = RequestsConnectionError("daemon went away")

        with pytest.raises(ContainerRuntimeError):
            await lifecycle_manager.create_container()

        assert len(fake_runtime.calls["remove"]) == 1
        assert port_allocator.reserved == set()
        assert port_allocator.assigned == set()
        assert await record_store.list_active() == []

    @pytest.mark.asyncio
    async def test_ports_released_when_removal_after_create_timeout_blows_up(self, lifecycle_manager, fake_runtime, port_allocator):
        fake_runtime.fail["create"] = runtime_timeout("create")
        fake_runtime.fail["remove"] = RequestsConnectionError("daemon went away")

        with pytest.raises(RuntimeTimeoutError):
            await lifecycle_manager.create_container()

        assert port_allocator.reserved == set()

    @pytest.mark.asyncio
    async def test_store_failure_removes_started_container(self, lifecycle_manager, fake_runtime, record_store, port_allocator):
        record_store.insert = AsyncMock(side_effect=StoreError("insert", "disk full"))

        with pytest.raises(StoreError):
            await lifecycle_manager.create_container()

        assert fake_runtime.containers == {}
        assert port_allocator.reserved == set()
        assert port_allocator.assigned == set()

    @pytest.mark.asyncio
    async def test_concurrent_creates_get_disjoint_ports(self, lifecycle_manager):
        records = await asyncio.gather(*(lifecycle_manager.create_container(port_count=3) for _ in range(10)))

        ports = [p for r in records for p in r.ports]
        assert len(ports) == len(set(ports)) == 30


class TestDeleteContainer:
    """Tests for delete_container."""

    @pytest.mark.asyncio
    async def test_delete_stops_removes_and_forgets(self, lifecycle_manager, fake_runtime, record_store, port_allocator):
        record = await lifecycle_manager.create_container()

        assert await lifecycle_manager.delete_container(record.id) is True

        assert fake_runtime.calls["stop"] == [record.id]
        assert fake_runtime.calls["remove"] == [record.id]
        assert record.id not in fake_runtime.containers
        assert await record_store.get(record.id) is None
        assert port_allocator.assigned == set()
        assert not lifecycle_manager.scheduler.is_scheduled(record.id)

    @pytest.mark.asyncio
    async def test_delete_unknown_container(self, lifecycle_manager, fake_runtime):
        with pytest.raises(ContainerNotFoundError):
            await lifecycle_manager.delete_container("deadbeef")

        assert fake_runtime.calls["stop"] == []

    @pytest.mark.asyncio
    async def test_second_delete_is_not_found(self, lifecycle_manager):
        record = await lifecycle_manager.create_container()
        await lifecycle_manager.delete_container(record.id)

        with pytest.raises(ContainerNotFoundError):
            await lifecycle_manager.delete_container(record.id)

    @pytest.mark.asyncio
    async def test_concurrent_deletes_execute_once(self, lifecycle_manager, fake_runtime):
        record = await lifecycle_manager.create_container()
        fake_runtime.delay["stop"] = 0.05

        results = await asyncio.gather(
            lifecycle_manager.delete_container(record.id),
            lifecycle_manager.delete_container(record.id),
        )

        assert sorted(results) == [False, True]
        assert len(fake_runtime.calls["stop"]) == 1
        assert len(fake_runtime.calls["remove"]) == 1

    @pytest.mark.asyncio
    async def test_delete_racing_expiry_executes_once(self, lifecycle_manager, fake_runtime, record_store):
        record = await lifecycle_manager.create_container()
        fake_runtime.delay["stop"] = 0.05

        await asyncio.gather(
            lifecycle_manager.delete_container(record.id),
            lifecycle_manager._expire(record.id),
            return_exceptions=True,
        )

        assert len(fake_runtime.calls["stop"]) == 1
        assert await record_store.get(record.id) is None

    @pytest.mark.asyncio
    async def test_failed_delete_leaves_record_expiring_and_retries(self, lifecycle_manager, fake_runtime, record_store, port_allocator):
        record = await lifecycle_manager.create_container()
        fake_runtime.fail["stop"] = [runtime_error("stop")]

        with pytest.raises(ContainerRuntimeError):
            await lifecycle_manager.delete_container(record.id)

        stored = await record_store.get(record.id)
        assert stored.state == ContainerState.EXPIRING
        assert port_allocator.assigned == set(record.ports)
        assert lifecycle_manager.scheduler.is_scheduled(record.id)

        await asyncio.sleep(0.3)

        assert await record_store.get(record.id) is None
        assert record.id not in fake_runtime.containers
        assert port_allocator.assigned == set()

    @pytest.mark.asyncio
    async def test_already_removed_container_still_deletes_record(self, lifecycle_manager, fake_runtime, record_store):
        record = await lifecycle_manager.create_container()
        del fake_runtime.containers[record.id]

        assert await lifecycle_manager.delete_container(record.id) is True
        assert await record_store.get(record.id) is None


class TestExpiry:
    """Tests for the expiry path."""

    @pytest.mark.asyncio
    async def test_expire_deletes_container(self, lifecycle_manager, fake_runtime, record_store, port_allocator):
        record = await lifecycle_manager.create_container()

        await lifecycle_manager._expire(record.id)

        assert await record_store.get(record.id) is None
        assert record.id not in fake_runtime.containers
        assert port_allocator.assigned == set()

    @pytest.mark.asyncio
    async def test_expire_of_deleted_container_is_noop(self, lifecycle_manager, fake_runtime):
        await lifecycle_manager._expire("gone")

        assert fake_runtime.calls["stop"] == []
        assert lifecycle_manager.stuck_containers == set()

    @pytest.mark.asyncio
    async def test_expire_retries_transient_failures(self, lifecycle_manager, fake_runtime, record_store):
        record = await lifecycle_manager.create_container()
        fake_runtime.fail["stop"] = [runtime_error("stop"), runtime_error("stop")]

        await lifecycle_manager._expire(record.id)

        assert len(fake_runtime.calls["stop"]) == 3
        assert await record_store.get(record.id) is None
        assert lifecycle_manager.stuck_containers == set()

    @pytest.mark.asyncio
    async def test_expire_marks_container_stuck_after_retries(self, lifecycle_manager, fake_runtime, record_store):
        record = await lifecycle_manager.create_container()
        fake_runtime.fail["stop"] = runtime_error("stop")

        await lifecycle_manager._expire(record.id)

        # 1 attempt + expiry_max_retries
        assert len(fake_runtime.calls["stop"]) == 3
        assert lifecycle_manager.stuck_containers == {record.id}
        assert (await record_store.get(record.id)).state == ContainerState.EXPIRING
        assert lifecycle_manager.get_stats()["stuck_containers"] == [record.id]

        # Stuck containers stay visible and can be deleted manually
        listed = await lifecycle_manager.list_containers()
        assert [r.id for r in listed] == [record.id]

        del fake_runtime.fail["stop"]
        assert await lifecycle_manager.delete_container(record.id) is True
        assert lifecycle_manager.stuck_containers == set()

    @pytest.mark.asyncio
    async def test_expire_retries_untranslated_errors_then_marks_stuck(self, lifecycle_manager, fake_runtime, record_store):
        record = await lifecycle_manager.create_container()
        fake_runtime.fail["stop"] = RequestsConnectionError("connection aborted")

        await lifecycle_manager._expire(record.id)

        assert len(fake_runtime.calls["stop"]) == 3
        assert lifecycle_manager.stuck_containers == {record.id}
        assert (await record_store.get(record.id)).state == ContainerState.EXPIRING

    @pytest.mark.asyncio
    async def test_advancing_clock_fires_expiry(self, clocked_manager, fake_runtime, record_store, fake_clock, port_allocator):
        await clocked_manager.start()
        record = await clocked_manager.create_container(ttl_seconds=60)

        await asyncio.sleep(0.1)
        assert await record_store.get(record.id) is not None

        fake_clock.advance(61)
        await asyncio.sleep(0.2)

        assert await record_store.get(record.id) is None
        assert record.id not in fake_runtime.containers
        assert port_allocator.assigned == set()

    @pytest.mark.asyncio
    async def test_timer_fires_expiry(self, lifecycle_manager, fake_runtime, record_store):
        record = await lifecycle_manager.create_container()

        lifecycle_manager.scheduler.schedule(record.id, 0)
        await asyncio.sleep(0.3)

        assert await record_store.get(record.id) is None
        assert record.id not in fake_runtime.containers


class TestQueries:
    """Tests for list/get/stats."""

    @pytest.mark.asyncio
    async def test_get_container(self, lifecycle_manager):
        record = await lifecycle_manager.create_container()

        assert await lifecycle_manager.get_container(record.id) == record
        with pytest.raises(ContainerNotFoundError):
            await lifecycle_manager.get_container("missing")

    @pytest.mark.asyncio
    async def test_stats(self, lifecycle_manager):
        await lifecycle_manager.create_container(port_count=3)

        stats = lifecycle_manager.get_stats()

        assert stats["ready"] is True
        assert stats["pending_timers"] == 1
        assert stats["assigned_ports"] == 3
        assert stats["reserved_ports"] == 0

    @pytest.mark.asyncio
    async def test_not_ready_before_start_and_after_shutdown(self, clocked_manager):
        assert clocked_manager.is_ready is False
        await clocked_manager.start()
        assert clocked_manager.is_ready is True
        await clocked_manager.shutdown()
        assert clocked_manager.is_ready is False


class TestReconcile:
    """Tests for startup reconciliation."""

    @pytest.mark.asyncio
    async def test_reconcile_aligns_records_with_runtime(self, clocked_manager, fake_runtime, record_store, port_allocator, fake_clock):
        now = fake_clock.now
        expired = ContainerRecord.new("expired", [31000], now - timedelta(hours=2), 3600)
        live = ContainerRecord.new("live", [31001, 31002], now - timedelta(minutes=10), 3600)
        vanished = ContainerRecord.new("vanished", [31003], now - timedelta(minutes=10), 3600)
        interrupted = ContainerRecord.new("interrupted", [31004], now - timedelta(minutes=10), 3600)
        interrupted.state = ContainerState.DELETING

        for record in (expired, live, vanished, interrupted):
            await record_store.insert(record)
        fake_runtime.add_container("expired")
        fake_runtime.add_container("live")
        fake_runtime.add_container("interrupted")
        fake_runtime.add_container("orphan")

        summary = await clocked_manager.start()

        assert summary.expired == 2
        assert summary.rescheduled == 1
        assert summary.dropped == 1
        assert summary.orphans_removed == 1
        assert summary.stuck == 0

        assert [r.id for r in await record_store.list_active()] == ["live"]
        assert set(fake_runtime.containers) == {"live"}
        assert port_allocator.assigned == {31001, 31002}
        assert clocked_manager.scheduler.is_scheduled("live")

    @pytest.mark.asyncio
    async def test_reconcile_reschedules_remaining_delay(self, clocked_manager, fake_runtime, record_store, fake_clock):
        live = ContainerRecord.new("live", [31001], fake_clock.now - timedelta(seconds=3590), 3600)
        await record_store.insert(live)
        fake_runtime.add_container("live")

        await clocked_manager.start()

        assert clocked_manager.scheduler.is_scheduled("live")
        assert live.remaining_seconds(fake_clock.now) == 10

        fake_clock.advance(11)
        await asyncio.sleep(0.2)

        assert await record_store.get("live") is None
        assert "live" not in fake_runtime.containers

    @pytest.mark.asyncio
    async def test_reconcile_survives_failing_expiry(self, clocked_manager, fake_runtime, record_store, fake_clock):
        expired = ContainerRecord.new("expired", [31000], fake_clock.now - timedelta(hours=2), 3600)
        live = ContainerRecord.new("live", [31001], fake_clock.now, 3600)
        await record_store.insert(expired)
        await record_store.insert(live)
        fake_runtime.add_container("expired")
        fake_runtime.add_container("live")
        clocked_manager._expire = AsyncMock(side_effect=RuntimeError("socket closed"))

        summary = await clocked_manager.start()

        assert clocked_manager.is_ready is True
        assert summary.stuck == 1
        assert summary.expired == 0
        assert summary.rescheduled == 1
        assert clocked_manager.stuck_containers == {"expired"}

    @pytest.mark.asyncio
    async def test_reconcile_marks_stuck_when_runtime_connection_fails(self, clocked_manager, fake_runtime, record_store, fake_clock):
        expired = ContainerRecord.new("expired", [31000], fake_clock.now - timedelta(hours=2), 3600)
        await record_store.insert(expired)
        fake_runtime.add_container("expired")
        fake_runtime.fail["stop"] = RequestsConnectionError("connection refused")

        summary = await clocked_manager.start()

        assert summary.stuck == 1
        assert (await record_store.get("expired")).state == ContainerState.EXPIRING

    @pytest.mark.asyncio
    async def test_reconcile_keeps_record_when_inspect_fails(self, clocked_manager, fake_runtime, record_store, fake_clock):
        live = ContainerRecord.new("live", [31001], fake_clock.now, 3600)
        await record_store.insert(live)
        fake_runtime.fail["inspect"] = runtime_error("inspect")

        summary = await clocked_manager.start()

        assert summary.rescheduled == 1
        assert await record_store.get("live") is not None

    @pytest.mark.asyncio
    async def test_reconcile_without_orphan_removal(self, record_store, fake_runtime, port_allocator, lifecycle_config, docker_config):
        lifecycle_config.reconcile_remove_orphans = False
        fake_runtime.add_container("orphan")
        manager = LifecycleManager(
            record_store, fake_runtime, port_allocator,
            lifecycle_config=lifecycle_config, docker_config=docker_config,
        )

        summary = await manager.start()
        await manager.shutdown()

        assert summary.orphans_removed == 0
        assert "orphan" in fake_runtime.containers
