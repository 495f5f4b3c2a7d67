"""Configuration management for the Browser Sandbox Manager.

This module provides a unified Settings class with flat, environment-driven
fields and grouped views over them.

Usage:
    from sandbox_manager.config import settings

    # Access grouped settings
    settings.api.host
    settings.ports.range_start
    settings.lifecycle.default_ttl_seconds

    # Or use flat access
    settings.api_host
    settings.port_range_start
    settings.default_ttl_seconds
"""

import secrets
from typing import Any, Dict, List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Import grouped configurations
from .api import APIConfig
from .docker import DockerConfig
from .lifecycle import LifecycleConfig
from .logging import LoggingConfig
from .ports import PortsConfig
from .security import SecurityConfig


class Settings(BaseSettings):
    """Application settings with environment variable support.

    This class provides both:
    1. Grouped access via nested configs (settings.api.host)
    2. Flat access (settings.api_host)
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore")

    # ========================================================================
    # FLAT FIELDS
    # ========================================================================

    # API Configuration
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3000, ge=1, le=65535)
    api_debug: bool = Field(default=False)
    api_reload: bool = Field(default=False)
    public_hostname: str = Field(default="localhost", description="Hostname reported with container ports")

    # Authentication Configuration
    api_key: str | None = Field(default=None, min_length=16)
    api_key_generated: bool = Field(default=False)
    dev_mode: bool = Field(default=False, description="Bypass bearer authentication (development only)")

    # Docker Configuration
    docker_base_url: str | None = Field(default=None, description="Docker daemon URL (empty = use environment)")
    docker_timeout: int = Field(default=60, ge=5)
    sandbox_image: str = Field(default="linuxserver/chromium:latest")
    container_name_prefix: str = Field(default="chromium-container")
    container_base_port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="First container-side port; the Nth host port maps to base + N",
    )
    container_environment: Dict[str, str] = Field(
        default_factory=lambda: {
            "PUID": "1000",
            "PGID": "1000",
            "TZ": "Etc/UTC",
            "CHROME_CLI": "chrome://newtab",
        }
    )
    container_shm_size: str = Field(default="512m")
    container_dns_servers: List[str] = Field(default_factory=lambda: ["94.140.14.14"])
    container_security_opt: List[str] = Field(default_factory=lambda: ["seccomp=unconfined"])
    container_stop_timeout: int = Field(default=10, ge=0, le=300)
    container_label_prefix: str = Field(default="com.browser-sandbox")

    # Port Allocation
    port_range_start: int = Field(default=1024, ge=1, le=65535)
    port_range_end: int = Field(default=65535, ge=1, le=65535)
    port_probe_attempts: int = Field(default=100, ge=1, le=10000)
    port_bind_host: str = Field(default="0.0.0.0")

    # Lifecycle Configuration
    default_ttl_seconds: int = Field(default=14400, ge=1)
    max_ttl_seconds: int = Field(default=604800, ge=1)
    default_port_count: int = Field(default=2, ge=1)
    max_port_count: int = Field(default=8, ge=1, le=64)
    runtime_call_timeout: float = Field(default=30.0, gt=0)
    expiry_max_retries: int = Field(default=3, ge=0, le=20)
    expiry_retry_backoff_seconds: float = Field(default=2.0, ge=0)
    expiry_check_interval_seconds: float = Field(default=5.0, gt=0)
    reconcile_remove_orphans: bool = Field(default=True)
    store_path: str = Field(default="./data/containers.db")

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    log_file: str | None = Field(default=None)
    log_max_size_mb: int = Field(default=100, ge=1)
    log_backup_count: int = Field(default=5, ge=1)
    log_container_id_length: int = Field(default=12, ge=0, le=64)
    enable_access_logs: bool = Field(default=True)
    enable_security_logs: bool = Field(default=True)

    # Development Configuration
    enable_cors: bool = Field(default=False)
    cors_origins: list[str] = Field(default_factory=list)
    enable_docs: bool = Field(default=True)

    # ========================================================================
    # VALIDATORS
    # ========================================================================

    @model_validator(mode="before")
    @classmethod
    def _generate_api_key(cls, data):
        """Generate a random bearer secret when none is configured."""
        if isinstance(data, dict):
            if not (data.get("api_key") or "").strip():
                data["api_key"] = secrets.token_hex(24)
                data["api_key_generated"] = True
        return data

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Only json and console renderers are supported."""
        if v.lower() not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v.lower()

    @model_validator(mode="after")
    def _check_port_range(self):
        if self.port_range_start > self.port_range_end:
            raise ValueError("port_range_start must not exceed port_range_end")
        return self

    # ========================================================================
    # GROUPED CONFIG ACCESS
    # ========================================================================

    @property
    def api(self) -> APIConfig:
        """Access API configuration group."""
        return APIConfig(
            api_host=self.api_host,
            api_port=self.api_port,
            api_debug=self.api_debug,
            api_reload=self.api_reload,
            public_hostname=self.public_hostname,
            enable_cors=self.enable_cors,
            cors_origins=self.cors_origins,
            enable_docs=self.enable_docs,
        )

    @property
    def security(self) -> SecurityConfig:
        """Access security configuration group."""
        return SecurityConfig(
            api_key=self.api_key,
            dev_mode=self.dev_mode,
            api_key_generated=self.api_key_generated,
        )

    @property
    def docker(self) -> DockerConfig:
        """Access Docker configuration group."""
        return DockerConfig(
            docker_base_url=self.docker_base_url,
            docker_timeout=self.docker_timeout,
            sandbox_image=self.sandbox_image,
            container_name_prefix=self.container_name_prefix,
            container_base_port=self.container_base_port,
            container_environment=self.container_environment,
            container_shm_size=self.container_shm_size,
            container_dns_servers=self.container_dns_servers,
            container_security_opt=self.container_security_opt,
            container_stop_timeout=self.container_stop_timeout,
            container_label_prefix=self.container_label_prefix,
        )

    @property
    def ports(self) -> PortsConfig:
        """Access port allocation configuration group."""
        return PortsConfig(
            port_range_start=self.port_range_start,
            port_range_end=self.port_range_end,
            port_probe_attempts=self.port_probe_attempts,
            port_bind_host=self.port_bind_host,
        )

    @property
    def lifecycle(self) -> LifecycleConfig:
        """Access lifecycle configuration group."""
        return LifecycleConfig(
            default_ttl_seconds=self.default_ttl_seconds,
            max_ttl_seconds=self.max_ttl_seconds,
            default_port_count=self.default_port_count,
            max_port_count=self.max_port_count,
            runtime_call_timeout=self.runtime_call_timeout,
            expiry_max_retries=self.expiry_max_retries,
            expiry_retry_backoff_seconds=self.expiry_retry_backoff_seconds,
            expiry_check_interval_seconds=self.expiry_check_interval_seconds,
            reconcile_remove_orphans=self.reconcile_remove_orphans,
            store_path=self.store_path,
        )

    @property
    def logging(self) -> LoggingConfig:
        """Access logging configuration group."""
        return LoggingConfig(
            log_level=self.log_level,
            log_format=self.log_format,
            log_file=self.log_file,
            log_max_size_mb=self.log_max_size_mb,
            log_backup_count=self.log_backup_count,
            log_container_id_length=self.log_container_id_length,
            enable_access_logs=self.enable_access_logs,
            enable_security_logs=self.enable_security_logs,
        )

    # ========================================================================
    # HELPER METHODS
    # ========================================================================

    def get_managed_label(self) -> str:
        """Label key marking containers owned by this service."""
        return f"{self.container_label_prefix}.managed"

    def get_summary(self) -> dict[str, Any]:
        """Non-sensitive configuration summary."""
        return {
            "debug": self.api_debug,
            "dev_mode": self.dev_mode,
            "image": self.sandbox_image,
            "port_range": [self.port_range_start, self.port_range_end],
            "default_ttl_seconds": self.default_ttl_seconds,
            "default_port_count": self.default_port_count,
            "store_path": self.store_path,
        }


# Global settings instance
settings = Settings()

__all__ = [
    "Settings",
    "settings",
    "APIConfig",
    "SecurityConfig",
    "DockerConfig",
    "PortsConfig",
    "LifecycleConfig",
    "LoggingConfig",
]
