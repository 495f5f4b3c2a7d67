"""API server configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class APIConfig(BaseSettings):
    """API server settings."""

    host: str = Field(default="0.0.0.0", alias="api_host")
    port: int = Field(default=3000, ge=1, le=65535, alias="api_port")
    debug: bool = Field(default=False, alias="api_debug")
    reload: bool = Field(default=False, alias="api_reload")

    # Hostname reported to clients alongside the mapped ports
    public_hostname: str = Field(default="localhost")

    # CORS Configuration
    enable_cors: bool = Field(default=False)
    cors_origins: list[str] = Field(default_factory=list)

    # Documentation
    enable_docs: bool = Field(default=True)

    class Config:
        env_prefix = ""
        extra = "ignore"
