"""Container record and API data models."""

# Standard library imports
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

# Third-party imports
from pydantic import BaseModel, ConfigDict, Field, model_validator


class ContainerState(str, Enum):
    """Lifecycle state of a provisioned container.

    provisioning -> running -> expiring | deleting -> deleted
    """

    PROVISIONING = "provisioning"
    RUNNING = "running"
    EXPIRING = "expiring"
    DELETING = "deleting"
    DELETED = "deleted"


# States from which a deletion attempt may claim the record
DELETABLE_STATES = frozenset({ContainerState.RUNNING, ContainerState.EXPIRING})


class ContainerRecord(BaseModel):
    """Durable record of a provisioned sandbox container."""

    id: str = Field(..., min_length=1, description="Runtime-assigned container id")
    created_at: datetime = Field(..., description="Confirmed start timestamp (UTC)")
    expires_at: datetime = Field(..., description="Automatic reclamation timestamp (UTC)")
    ports: List[int] = Field(..., min_length=1, description="Host ports, in binding order")
    state: ContainerState = Field(default=ContainerState.RUNNING)

    @model_validator(mode="after")
    def _check_expiry_after_creation(self):
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")
        return self

    @classmethod
    def new(
        cls, container_id: str, ports: List[int], created_at: datetime, ttl_seconds: int
    ) -> "ContainerRecord":
        """Build a running record whose expiry is created_at + ttl."""
        return cls(
            id=container_id,
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=ttl_seconds),
            ports=list(ports),
            state=ContainerState.RUNNING,
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def remaining_seconds(self, now: datetime) -> float:
        """Seconds until expiry, never negative."""
        return max(0.0, (self.expires_at - now).total_seconds())


@dataclass
class ContainerSpec:
    """Everything the runtime needs to create one sandbox container."""

    name: str
    image: str
    # container port -> host port
    port_bindings: Dict[int, int]
    environment: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    shm_size: Optional[str] = None
    dns: List[str] = field(default_factory=list)
    security_opt: List[str] = field(default_factory=list)
    tty: bool = True

    @property
    def host_ports(self) -> List[int]:
        return list(self.port_bindings.values())


@dataclass
class ReconcileSummary:
    """Outcome of startup reconciliation."""

    expired: int = 0
    rescheduled: int = 0
    dropped: int = 0
    orphans_removed: int = 0
    stuck: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "expired": self.expired,
            "rescheduled": self.rescheduled,
            "dropped": self.dropped,
            "orphans_removed": self.orphans_removed,
            "stuck": self.stuck,
        }


# API models


class CreateContainerRequest(BaseModel):
    """Request body for provisioning a sandbox container."""

    model_config = ConfigDict(populate_by_name=True)

    ttl_seconds: Optional[int] = Field(
        default=None, alias="ttlSeconds", gt=0, description="Time-to-live in seconds"
    )
    port_count: Optional[int] = Field(
        default=None, alias="portCount", gt=0, description="Number of host ports to map"
    )


class CreateContainerResponse(BaseModel):
    """Response for a provisioned container."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    hostname: str
    ports: List[int]
    created_at: datetime = Field(..., alias="createdAt")
    expires_at: datetime = Field(..., alias="expiresAt")


class ContainerInfo(BaseModel):
    """Active container as reported by the listing endpoints."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    id: str
    ports: List[int]
    created_at: datetime = Field(..., alias="createdAt")
    expires_at: datetime = Field(..., alias="expiresAt")
    state: ContainerState

    @classmethod
    def from_record(cls, record: ContainerRecord) -> "ContainerInfo":
        return cls(
            id=record.id,
            ports=record.ports,
            created_at=record.created_at,
            expires_at=record.expires_at,
            state=record.state,
        )


class DeleteContainerResponse(BaseModel):
    """Response for a deletion request."""

    message: str
