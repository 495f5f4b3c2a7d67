"""Configuration validation utilities."""

import logging
from pathlib import Path
from typing import Any, Dict, List

from ..config import settings

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


class ConfigValidator:
    """Validates cross-field constraints that single field validators cannot see."""

    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate_all(self) -> bool:
        """Validate all configuration settings."""
        self.errors.clear()
        self.warnings.clear()

        self._validate_security_config()
        self._validate_port_config()
        self._validate_lifecycle_config()
        self._validate_store_config()

        if self.warnings:
            for warning in self.warnings:
                logger.warning(f"Configuration warning: {warning}")

        if self.errors:
            for error in self.errors:
                logger.error(f"Configuration error: {error}")
            return False

        return True

    def _validate_security_config(self):
        if settings.dev_mode:
            self.warnings.append("DEV_MODE is enabled - authentication is bypassed")
        if settings.api_key_generated:
            self.warnings.append(
                "No API_KEY configured - a random key was generated for this run"
            )
        if settings.api_debug:
            self.warnings.append("Debug mode is enabled - disable in production")

    def _validate_port_config(self):
        range_size = settings.port_range_end - settings.port_range_start + 1
        if range_size < settings.max_port_count:
            self.errors.append(
                f"Port range {settings.port_range_start}-{settings.port_range_end} "
                f"cannot hold max_port_count={settings.max_port_count} ports"
            )
        if settings.port_range_start < 1024:
            self.warnings.append("Port range includes privileged ports below 1024")
        if settings.container_base_port + settings.max_port_count - 1 > 65535:
            self.errors.append(
                "container_base_port + max_port_count exceeds the highest port number"
            )

    def _validate_lifecycle_config(self):
        if settings.default_ttl_seconds > settings.max_ttl_seconds:
            self.errors.append("default_ttl_seconds exceeds max_ttl_seconds")
        if settings.default_port_count > settings.max_port_count:
            self.errors.append("default_port_count exceeds max_port_count")
        if settings.container_stop_timeout >= settings.runtime_call_timeout:
            self.errors.append(
                "container_stop_timeout must be shorter than runtime_call_timeout"
            )

    def _validate_store_config(self):
        if settings.store_path == ":memory:":
            self.warnings.append("Record store is in memory - records will not survive restarts")
            return
        parent = Path(settings.store_path).expanduser().parent
        if parent.exists() and not parent.is_dir():
            self.errors.append(f"Store directory is not a directory: {parent}")

    def get_validation_report(self) -> Dict[str, Any]:
        """Get detailed validation report."""
        return {
            "valid": len(self.errors) == 0,
            "errors": self.errors.copy(),
            "warnings": self.warnings.copy(),
        }


def validate_configuration() -> bool:
    """Validate application configuration."""
    validator = ConfigValidator()
    return validator.validate_all()


def get_configuration_summary() -> Dict[str, Any]:
    """Get a summary of current configuration (non-sensitive values only)."""
    validator = ConfigValidator()
    validator.validate_all()
    return {
        "settings": settings.get_summary(),
        "validation": validator.get_validation_report(),
    }
