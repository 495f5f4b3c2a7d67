"""Container lifecycle management.

The LifecycleManager is the only component that mutates the record store and
the container runtime together. Ordering rules:

- ports are reserved before any runtime call and released if creation fails
- a record is committed only after the runtime start succeeded
- a record is removed only after runtime stop/remove succeeded (or the
  container was already gone)
- deletion is claimed with a compare-and-set to the ``deleting`` state, so a
  manual delete racing the expiry timer executes stop/remove exactly once
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

import structlog

from ..config import settings
from ..config.docker import DockerConfig
from ..config.lifecycle import LifecycleConfig
from ..models import (
    DELETABLE_STATES,
    ContainerRecord,
    ContainerSpec,
    ContainerState,
    ReconcileSummary,
)
from ..models.errors import (
    ContainerNotFoundError,
    ContainerRuntimeError,
    RuntimeTimeoutError,
    StoreError,
    ValidationError,
    error_context,
)
from ..utils.id_generator import generate_container_name
from .expiry import ExpiryScheduler, utc_now
from .interfaces import ContainerRuntimeInterface, RecordStoreInterface
from .ports import PortAllocator

logger = structlog.get_logger(__name__)

REASON_MANUAL = "manual"
REASON_EXPIRED = "expired"


class LifecycleManager:
    """Creates, deletes, expires and reconciles sandbox containers."""

    def __init__(
        self,
        store: RecordStoreInterface,
        runtime: ContainerRuntimeInterface,
        allocator: PortAllocator,
        lifecycle_config: Optional[LifecycleConfig] = None,
        docker_config: Optional[DockerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._runtime = runtime
        self._allocator = allocator
        self._config = lifecycle_config or settings.lifecycle
        self._docker = docker_config or settings.docker
        self._clock = clock or utc_now
        self._scheduler = ExpiryScheduler(
            self._expire,
            clock=self._clock,
            check_interval=self._config.expiry_check_interval_seconds,
        )
        self._stuck: Set[str] = set()
        self._ready = False

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def scheduler(self) -> ExpiryScheduler:
        return self._scheduler

    @property
    def stuck_containers(self) -> Set[str]:
        """Containers whose expiry exhausted its retries."""
        return set(self._stuck)

    async def start(self) -> ReconcileSummary:
        """Reconcile persisted records with the runtime and start serving."""
        summary = await self.reconcile()
        self._ready = True
        logger.info("Lifecycle manager started", **summary.to_dict())
        return summary

    async def shutdown(self) -> None:
        """Stop all expiry timers. Containers keep running until the next reconcile."""
        self._ready = False
        await self._scheduler.stop()
        logger.info("Lifecycle manager stopped")

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_container(
        self, ttl_seconds: Optional[int] = None, port_count: Optional[int] = None
    ) -> ContainerRecord:
        """Provision a sandbox container and schedule its expiry.

        Raises:
            ValidationError: ttl or port count out of range
            AllocationExhaustedError: no free host ports
            ContainerRuntimeError: runtime create/start failed (compensated)
            StoreError: the record could not be persisted (compensated)
        """
        ttl_seconds, port_count = self._validate_request(ttl_seconds, port_count)

        ports = self._allocator.allocate(port_count)
        spec = self.build_spec(ports)
        log = logger.bind(name=spec.name, ports=ports)

        try:
            container_id = await self._runtime.create(spec)
        except (Exception, asyncio.CancelledError) as e:
            log.error("Container create failed", **error_context(e))
            try:
                if isinstance(e, RuntimeTimeoutError):
                    # The daemon may still finish the create after we gave up
                    await self._discard_container(spec.name)
            finally:
                self._allocator.release(ports)
            raise

        log = log.bind(container_id=container_id)
        try:
            await self._runtime.start(container_id)
            record = ContainerRecord.new(container_id, ports, self._clock(), ttl_seconds)
            await self._store.insert(record)
        except (Exception, asyncio.CancelledError) as e:
            log.error("Container provisioning failed, removing container", **error_context(e))
            try:
                await self._discard_container(container_id)
            finally:
                self._allocator.release(ports)
            raise

        self._allocator.confirm(ports)
        self._scheduler.schedule_at(container_id, record.expires_at)
        log.info(
            "Container provisioned",
            ttl_seconds=ttl_seconds,
            expires_at=record.expires_at.isoformat(),
        )
        return record

    def build_spec(self, ports: List[int]) -> ContainerSpec:
        """Runtime spec binding the Nth host port to container port base + N."""
        return ContainerSpec(
            name=generate_container_name(self._docker.name_prefix),
            image=self._docker.image,
            port_bindings={self._docker.base_port + i: port for i, port in enumerate(ports)},
            environment=dict(self._docker.environment),
            labels={f"{self._docker.label_prefix}.ports": ",".join(str(p) for p in ports)},
            shm_size=self._docker.shm_size,
            dns=list(self._docker.dns_servers),
            security_opt=list(self._docker.security_opt),
        )

    def _validate_request(
        self, ttl_seconds: Optional[int], port_count: Optional[int]
    ) -> Tuple[int, int]:
        if ttl_seconds is None:
            ttl_seconds = self._config.default_ttl_seconds
        if port_count is None:
            port_count = self._config.default_port_count

        if ttl_seconds <= 0 or ttl_seconds > self._config.max_ttl_seconds:
            raise ValidationError(
                f"ttlSeconds must be between 1 and {self._config.max_ttl_seconds}"
            )
        if port_count <= 0 or port_count > self._config.max_port_count:
            raise ValidationError(
                f"portCount must be between 1 and {self._config.max_port_count}"
            )
        return ttl_seconds, port_count

    async def _discard_container(self, container_id: str) -> None:
        """Compensating removal; a failure leaves the container for orphan reconciliation."""
        try:
            await self._runtime.remove(container_id)
        except Exception as e:
            # The original failure is re-raised by the caller
            logger.error(
                "Compensating removal failed, container left for reconciliation",
                container_id=container_id,
                **error_context(e),
            )

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_container(self, container_id: str, reason: str = REASON_MANUAL) -> bool:
        """Stop and remove a container, then drop its record.

        Returns:
            True if this call executed the deletion, False if another caller
            already claimed it

        Raises:
            ContainerNotFoundError: no record for the id
            ContainerRuntimeError: stop/remove failed (record left ``expiring``)
            StoreError: the store could not be read or updated
        """
        record = await self._store.get(container_id)
        if record is None:
            raise ContainerNotFoundError(container_id)

        log = logger.bind(container_id=container_id, reason=reason)

        claimed = await self._store.compare_and_set_state(
            container_id, DELETABLE_STATES, ContainerState.DELETING
        )
        if not claimed:
            log.info("Deletion already claimed by another caller", state=record.state.value)
            return False

        self._scheduler.cancel(container_id)

        try:
            await self._runtime.stop(container_id)
            await self._runtime.remove(container_id)
            await self._store.delete(container_id)
        except Exception as e:
            log.error("Container deletion failed", **error_context(e))
            await self._release_claim(container_id)
            if reason != REASON_EXPIRED:
                self._scheduler.schedule(container_id, self._config.expiry_retry_backoff_seconds)
            raise

        self._allocator.release(record.ports)
        self._stuck.discard(container_id)
        log.info("Container deleted", ports=record.ports)
        return True

    async def _release_claim(self, container_id: str) -> None:
        """Failed deletion: leave the record retryable as ``expiring``."""
        try:
            await self._store.compare_and_set_state(
                container_id, ContainerState.DELETING, ContainerState.EXPIRING
            )
        except StoreError as e:
            logger.error(
                "Could not release deletion claim",
                container_id=container_id,
                **error_context(e),
            )

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    async def _expire(self, container_id: str) -> None:
        """Expiry timer callback: delete with bounded retries and backoff."""
        attempts = self._config.expiry_max_retries + 1
        delay = self._config.expiry_retry_backoff_seconds
        log = logger.bind(container_id=container_id)

        for attempt in range(1, attempts + 1):
            try:
                await self._store.compare_and_set_state(
                    container_id, ContainerState.RUNNING, ContainerState.EXPIRING
                )
                await self.delete_container(container_id, reason=REASON_EXPIRED)
                return
            except ContainerNotFoundError:
                log.debug("Expired container already deleted")
                return
            except Exception as e:
                if attempt == attempts:
                    log.error("Final expiry attempt failed", attempt=attempt, **error_context(e))
                    break
                log.warning(
                    "Expiry attempt failed, retrying",
                    attempt=attempt,
                    retry_in_seconds=delay,
                    **error_context(e),
                )
                await asyncio.sleep(delay)
                delay *= 2

        self._stuck.add(container_id)
        log.error(
            "Container stuck in expiring state",
            attempts=attempts,
            action="delete manually via DELETE /delete-container/{id} or restart to retry",
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_containers(self) -> List[ContainerRecord]:
        return await self._store.list_active()

    async def get_container(self, container_id: str) -> ContainerRecord:
        record = await self._store.get(container_id)
        if record is None:
            raise ContainerNotFoundError(container_id)
        return record

    def get_stats(self) -> Dict[str, object]:
        return {
            "ready": self._ready,
            "pending_timers": self._scheduler.pending_count,
            "reserved_ports": len(self._allocator.reserved),
            "assigned_ports": len(self._allocator.assigned),
            "stuck_containers": sorted(self._stuck),
        }

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self) -> ReconcileSummary:
        """Align persisted records with the runtime after a restart.

        Expired (or already ``expiring``) records are deleted now; live ones get
        their timers back with the remaining delay; records whose container
        vanished are dropped; managed containers without a record are removed.
        """
        summary = ReconcileSummary()
        records = await self._store.list_active()
        now = self._clock()
        due: List[ContainerRecord] = []

        for record in records:
            if record.state == ContainerState.DELETING:
                # Deletion interrupted by a crash
                await self._store.compare_and_set_state(
                    record.id, ContainerState.DELETING, ContainerState.EXPIRING
                )
                record.state = ContainerState.EXPIRING

            self._allocator.claim(record.ports)

            if record.is_expired(now) or record.state == ContainerState.EXPIRING:
                due.append(record)
                continue

            try:
                status = await self._runtime.inspect(record.id)
            except ContainerRuntimeError as e:
                logger.warning(
                    "Could not inspect container during reconcile, keeping record",
                    container_id=record.id,
                    **error_context(e),
                )
                status = "unknown"

            if status is None:
                logger.warning(
                    "Container missing from runtime, dropping record",
                    container_id=record.id,
                )
                await self._store.delete(record.id)
                self._allocator.release(record.ports)
                summary.dropped += 1
                continue

            self._scheduler.schedule_at(record.id, record.expires_at)
            summary.rescheduled += 1

        if due:
            results = await asyncio.gather(
                *(self._expire(record.id) for record in due), return_exceptions=True
            )
            for record, result in zip(due, results):
                if isinstance(result, Exception):
                    logger.error(
                        "Expiry during reconcile failed",
                        container_id=record.id,
                        **error_context(result),
                    )
                    self._stuck.add(record.id)
                if record.id in self._stuck:
                    summary.stuck += 1
                else:
                    summary.expired += 1

        if self._config.reconcile_remove_orphans:
            summary.orphans_removed = await self._remove_orphans(r.id for r in records)

        logger.info("Reconciliation completed", **summary.to_dict())
        return summary

    async def _remove_orphans(self, known_ids: Iterable[str]) -> int:
        """Remove managed runtime containers that have no record."""
        known = set(known_ids)
        try:
            managed = await self._runtime.list_managed()
        except ContainerRuntimeError as e:
            logger.warning("Could not list managed containers", **error_context(e))
            return 0

        removed = 0
        for container_id in managed:
            if container_id in known:
                continue
            logger.warning("Removing orphaned container", container_id=container_id)
            try:
                await self._runtime.remove(container_id)
                removed += 1
            except ContainerRuntimeError as e:
                logger.error(
                    "Failed to remove orphaned container",
                    container_id=container_id,
                    **error_context(e),
                )
        return removed
