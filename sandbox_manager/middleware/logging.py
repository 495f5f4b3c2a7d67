"""Request logging middleware."""

# Standard library imports
import time
from typing import Callable

# Third-party imports
import structlog

logger = structlog.get_logger(__name__)


class RequestLoggingMiddleware:
    """Logs one line per API request with its outcome and duration.

    Health probes are not logged. Server errors are logged at error level,
    client errors at warning level.
    """

    def __init__(self, app: Callable):
        self.app = app
        self.quiet_paths = {"/health", "/health/detailed"}

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        if scope["type"] != "http" or scope.get("path") in self.quiet_paths:
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        response_status = None

        async def send_wrapper(message):
            nonlocal response_status
            if message["type"] == "http.response.start":
                response_status = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            client = scope.get("client")
            log_data = {
                "method": scope.get("method"),
                "path": scope.get("path"),
                "status": response_status or 500,
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                "client_ip": client[0] if client else "unknown",
            }
            if log_data["status"] >= 500:
                logger.error("Request failed", **log_data)
            elif log_data["status"] >= 400:
                logger.warning("Request rejected", **log_data)
            else:
                logger.info("Request processed", **log_data)
