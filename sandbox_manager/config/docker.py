"""Docker runtime configuration."""

from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings


class DockerConfig(BaseSettings):
    """Docker connection and sandbox container settings."""

    base_url: str | None = Field(default=None, alias="docker_base_url")
    timeout: int = Field(default=60, ge=5, alias="docker_timeout")

    # Sandbox container template
    image: str = Field(default="linuxserver/chromium:latest", alias="sandbox_image")
    name_prefix: str = Field(default="chromium-container", alias="container_name_prefix")
    base_port: int = Field(default=3000, ge=1, le=65535, alias="container_base_port")
    environment: Dict[str, str] = Field(
        default_factory=lambda: {
            "PUID": "1000",
            "PGID": "1000",
            "TZ": "Etc/UTC",
            "CHROME_CLI": "chrome://newtab",
        },
        alias="container_environment",
    )
    shm_size: str = Field(default="512m", alias="container_shm_size")
    dns_servers: List[str] = Field(
        default_factory=lambda: ["94.140.14.14"], alias="container_dns_servers"
    )
    security_opt: List[str] = Field(
        default_factory=lambda: ["seccomp=unconfined"], alias="container_security_opt"
    )
    stop_timeout: int = Field(default=10, ge=0, le=300, alias="container_stop_timeout")

    # Container labeling for orphan detection
    label_prefix: str = Field(default="com.browser-sandbox", alias="container_label_prefix")

    class Config:
        env_prefix = ""
        extra = "ignore"
