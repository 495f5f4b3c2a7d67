"""Host port allocation for sandbox containers.

Candidate ports are checked against the OS with a bind probe and against a
process-wide reservation set. Probe and reservation happen under one lock so
two concurrent allocations can never hand out the same port.
"""

import random
import socket
import threading
from typing import Iterable, List, Optional, Set

import structlog

from ..models.errors import AllocationExhaustedError, ValidationError

logger = structlog.get_logger(__name__)


class PortAllocator:
    """Reserves disjoint host ports.

    Ports move through three sets:
    - reserved: handed out by allocate(), container not yet started
    - assigned: owning container confirmed started (confirm/claim)
    - free: everything else (release)
    Both reserved and assigned ports are excluded from allocation.
    """

    def __init__(
        self,
        range_start: int = 1024,
        range_end: int = 65535,
        probe_attempts: int = 100,
        bind_host: str = "0.0.0.0",
        rng: Optional[random.Random] = None,
    ):
        if range_start > range_end:
            raise ValueError("range_start must not exceed range_end")
        self.range_start = range_start
        self.range_end = range_end
        self.probe_attempts = probe_attempts
        self.bind_host = bind_host
        self._rng = rng or random.SystemRandom()
        self._lock = threading.Lock()
        self._reserved: Set[int] = set()
        self._assigned: Set[int] = set()

    @property
    def reserved(self) -> Set[int]:
        with self._lock:
            return set(self._reserved)

    @property
    def assigned(self) -> Set[int]:
        with self._lock:
            return set(self._assigned)

    def allocate(self, count: int) -> List[int]:
        """Reserve `count` distinct free ports, in allocation order.

        Raises:
            ValidationError: count is not positive
            AllocationExhaustedError: probe budget spent before enough ports were found
        """
        if count < 1:
            raise ValidationError("Port count must be at least 1")

        budget = self.probe_attempts * count
        ports: List[int] = []
        attempts = 0

        with self._lock:
            while len(ports) < count and attempts < budget:
                attempts += 1
                candidate = self._rng.randint(self.range_start, self.range_end)
                if candidate in self._reserved or candidate in self._assigned:
                    continue
                if not self._probe(candidate):
                    continue
                self._reserved.add(candidate)
                ports.append(candidate)

            if len(ports) < count:
                self._reserved.difference_update(ports)
                logger.error(
                    "Port allocation exhausted",
                    requested=count,
                    found=len(ports),
                    attempts=attempts,
                    range_start=self.range_start,
                    range_end=self.range_end,
                )
                raise AllocationExhaustedError(requested=count, attempts=attempts)

        logger.debug("Ports reserved", ports=ports, attempts=attempts)
        return ports

    def confirm(self, ports: Iterable[int]) -> None:
        """Owning container started: keep the ports out of circulation."""
        ports = set(ports)
        with self._lock:
            self._reserved.difference_update(ports)
            self._assigned.update(ports)

    def claim(self, ports: Iterable[int]) -> None:
        """Mark ports of records restored at startup as assigned."""
        with self._lock:
            self._assigned.update(ports)

    def release(self, ports: Iterable[int]) -> None:
        """Return ports to the free pool (abandoned creation or deleted container)."""
        ports = set(ports)
        with self._lock:
            self._reserved.difference_update(ports)
            self._assigned.difference_update(ports)
        if ports:
            logger.debug("Ports released", ports=sorted(ports))

    def _probe(self, port: int) -> bool:
        """True if nothing on this host is bound to the port."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((self.bind_host, port))
            except OSError:
                return False
        return True
