"""Container lifecycle configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class LifecycleConfig(BaseSettings):
    """TTL, retry and persistence settings for provisioned containers."""

    default_ttl_seconds: int = Field(default=14400, ge=1)
    max_ttl_seconds: int = Field(default=604800, ge=1)
    default_port_count: int = Field(default=2, ge=1)
    max_port_count: int = Field(default=8, ge=1, le=64)

    # Runtime calls
    runtime_call_timeout: float = Field(default=30.0, gt=0)

    # Expiry retries and timer granularity
    expiry_max_retries: int = Field(default=3, ge=0, le=20)
    expiry_retry_backoff_seconds: float = Field(default=2.0, ge=0)
    expiry_check_interval_seconds: float = Field(default=5.0, gt=0)

    # Startup reconciliation
    reconcile_remove_orphans: bool = Field(default=True)

    # Durable record store
    store_path: str = Field(default="./data/containers.db")

    class Config:
        env_prefix = ""
        extra = "ignore"
