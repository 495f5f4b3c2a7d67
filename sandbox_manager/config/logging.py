"""Logging configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class LoggingConfig(BaseSettings):
    """Log output, rotation and redaction settings."""

    level: str = Field(default="INFO", alias="log_level")
    format: str = Field(default="json", alias="log_format")

    # Optional rotating file next to stdout
    file: str | None = Field(default=None, alias="log_file")
    max_size_mb: int = Field(default=100, ge=1, alias="log_max_size_mb")
    backup_count: int = Field(default=5, ge=1, alias="log_backup_count")

    # Characters of a container id kept in log records; 0 logs full ids
    container_id_length: int = Field(default=12, ge=0, le=64, alias="log_container_id_length")

    enable_access_logs: bool = Field(default=True)
    security_logs: bool = Field(default=True, alias="enable_security_logs")

    class Config:
        env_prefix = ""
        extra = "ignore"
