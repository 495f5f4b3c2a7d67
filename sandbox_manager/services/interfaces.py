"""Service interfaces for the Browser Sandbox Manager."""

# Standard library imports
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Union

# Local application imports
from ..models import ContainerRecord, ContainerSpec, ContainerState


class ContainerRuntimeInterface(ABC):
    """Interface to the external container engine.

    Every call is bounded by a timeout. stop() and remove() treat an
    already-stopped or already-removed container as success.
    """

    @abstractmethod
    async def create(self, spec: ContainerSpec) -> str:
        """Create (but do not start) a container and return its id."""
        pass

    @abstractmethod
    async def start(self, container_id: str) -> None:
        """Start a created container."""
        pass

    @abstractmethod
    async def stop(self, container_id: str) -> None:
        """Stop a container; no-op if already stopped or gone."""
        pass

    @abstractmethod
    async def remove(self, container_id: str) -> None:
        """Remove a container; no-op if already gone."""
        pass

    @abstractmethod
    async def inspect(self, container_id: str) -> Optional[str]:
        """Return the container status, or None if the runtime has no such container."""
        pass

    @abstractmethod
    async def list_managed(self) -> List[str]:
        """Ids of all containers labelled as managed by this service."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Check runtime reachability."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the runtime connection."""
        pass


class RecordStoreInterface(ABC):
    """Interface for the durable container record table."""

    @abstractmethod
    async def start(self) -> None:
        """Open the store and create the schema."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the store."""
        pass

    @abstractmethod
    async def insert(self, record: ContainerRecord) -> None:
        """Insert a new record; fails if the id already exists."""
        pass

    @abstractmethod
    async def get(self, container_id: str) -> Optional[ContainerRecord]:
        """Retrieve a record by id."""
        pass

    @abstractmethod
    async def list_active(self) -> List[ContainerRecord]:
        """List every stored record, oldest first."""
        pass

    @abstractmethod
    async def compare_and_set_state(
        self,
        container_id: str,
        expected: Union[ContainerState, Iterable[ContainerState]],
        new_state: ContainerState,
    ) -> bool:
        """Atomically move a record to new_state if its state is one of expected."""
        pass

    @abstractmethod
    async def delete(self, container_id: str) -> bool:
        """Delete a record; returns False if it did not exist."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Check store reachability."""
        pass
