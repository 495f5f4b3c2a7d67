"""Structured logging for the Browser Sandbox Manager.

Every record carries the service name and version. Container ids are 64 hex
characters; they are logged at full length by call sites and shortened here
to the Docker CLI form, so a log line can be matched against ``docker ps``.
"""

# Standard library imports
import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, List, Optional

# Third-party imports
import structlog

# Local application imports
from .._version import __version__
from ..config import settings
from ..config.logging import LoggingConfig

SERVICE_NAME = "browser-sandbox-manager"
SECURITY_LOGGER = "sandbox_manager.security"

_CONTAINER_ID_KEYS = ("container_id",)
_HEX_ID = re.compile(r"^[0-9a-f]{13,64}$")

# Libraries that are chatty at INFO: the Docker SDK and its HTTP transport,
# and the sqlite worker thread
_QUIET_LOGGERS = ("docker", "urllib3", "aiosqlite")


class ContainerIdShortener:
    """structlog processor truncating container ids to ``length`` characters.

    Only values that look like Docker ids are touched. A length of 0 keeps ids
    at full length.
    """

    def __init__(self, length: int = 12):
        self.length = length

    def __call__(self, logger, method_name, event_dict):
        if not self.length:
            return event_dict
        for key in _CONTAINER_ID_KEYS:
            value = event_dict.get(key)
            if isinstance(value, str) and _HEX_ID.match(value):
                event_dict[key] = value[: self.length]
        return event_dict


def add_service_context(logger, method_name, event_dict):
    """Stamp records with the service identity."""
    event_dict["service"] = SERVICE_NAME
    event_dict["version"] = __version__
    return event_dict


def build_processors(config: LoggingConfig) -> List[Any]:
    """Processor chain ending in the JSON or console renderer."""
    processors: List[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        ContainerIdShortener(config.container_id_length),
        add_service_context,
    ]

    if config.format.lower() == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """Configure stdlib logging and structlog from the logging settings."""
    config = config or settings.logging
    level = getattr(logging, config.level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=build_processors(config),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if config.file:
        logging.getLogger().addHandler(_rotating_file_handler(config, level))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    # Request lines come from RequestLoggingMiddleware; uvicorn's own are opt-in
    logging.getLogger("uvicorn.access").setLevel(
        logging.INFO if config.enable_access_logs else logging.WARNING
    )
    logging.getLogger(SECURITY_LOGGER).disabled = not config.security_logs


def _rotating_file_handler(config: LoggingConfig, level: int) -> logging.Handler:
    path = Path(config.file)
    path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        filename=path,
        maxBytes=config.max_size_mb * 1024 * 1024,
        backupCount=config.backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(level)
    return handler


def log_security_event(event_type: str, client_ip: str, **details: Any) -> None:
    """Record a rejected or suspicious request on the security logger."""
    structlog.get_logger(SECURITY_LOGGER).warning(
        "Security event", event_type=event_type, client_ip=client_ip, **details
    )
