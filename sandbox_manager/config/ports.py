"""Host port allocation configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class PortsConfig(BaseSettings):
    """Host port range eligible for sandbox port bindings."""

    range_start: int = Field(default=1024, ge=1, le=65535, alias="port_range_start")
    range_end: int = Field(default=65535, ge=1, le=65535, alias="port_range_end")
    probe_attempts: int = Field(default=100, ge=1, le=10000, alias="port_probe_attempts")
    bind_host: str = Field(default="0.0.0.0", alias="port_bind_host")

    class Config:
        env_prefix = ""
        extra = "ignore"
