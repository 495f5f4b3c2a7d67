"""Container provisioning endpoints."""

import re
from typing import List, Optional

import structlog
from fastapi import APIRouter, Body

from ..config import settings
from ..dependencies.services import LifecycleManagerDep
from ..models import (
    ContainerInfo,
    CreateContainerRequest,
    CreateContainerResponse,
    DeleteContainerResponse,
)
from ..utils.error_handlers import create_validation_error

logger = structlog.get_logger(__name__)
router = APIRouter()

# Docker ids are hex; names allow [a-zA-Z0-9][a-zA-Z0-9_.-]
CONTAINER_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


def validate_container_id(container_id: str) -> str:
    """Reject ids that could not have been issued by the runtime."""
    if not CONTAINER_ID_PATTERN.match(container_id):
        raise create_validation_error(
            "id", "Container id may only contain letters, digits, '_', '.' and '-'", "invalid_id"
        )
    return container_id


@router.post("/create-container", response_model=CreateContainerResponse)
async def create_container(
    manager: LifecycleManagerDep,
    request: Optional[CreateContainerRequest] = Body(default=None),
):
    """Provision a browser sandbox container.

    The container is reclaimed automatically after ``ttlSeconds``.

    Returns:
        - 200: container id, hostname, host ports and expiry
        - 400: ttlSeconds/portCount out of range
        - 500: port allocation, runtime or store failure
    """
    request = request or CreateContainerRequest()
    record = await manager.create_container(
        ttl_seconds=request.ttl_seconds, port_count=request.port_count
    )

    return CreateContainerResponse(
        id=record.id,
        hostname=settings.public_hostname,
        ports=record.ports,
        created_at=record.created_at,
        expires_at=record.expires_at,
    )


@router.delete("/delete-container/{container_id}", response_model=DeleteContainerResponse)
async def delete_container(container_id: str, manager: LifecycleManagerDep):
    """Stop and remove a container before its TTL expires.

    Returns:
        - 200: deleted, or deletion already in progress
        - 400: malformed id
        - 404: no such container
        - 500: runtime or store failure (an automatic retry is scheduled)
    """
    validate_container_id(container_id)

    executed = await manager.delete_container(container_id)
    if executed:
        message = f"Container {container_id} deleted successfully"
    else:
        message = f"Container {container_id} is already being deleted"

    return DeleteContainerResponse(message=message)


@router.get("/containers", response_model=List[ContainerInfo])
async def list_containers(manager: LifecycleManagerDep):
    """List all active containers, including ones stuck in ``expiring``."""
    records = await manager.list_containers()
    return [ContainerInfo.from_record(record) for record in records]


@router.get("/containers/{container_id}", response_model=ContainerInfo)
async def get_container(container_id: str, manager: LifecycleManagerDep):
    """Get a single active container."""
    validate_container_id(container_id)
    record = await manager.get_container(container_id)
    return ContainerInfo.from_record(record)
