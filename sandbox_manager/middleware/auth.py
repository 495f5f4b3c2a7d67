"""Authentication middleware for bearer secret validation."""

from typing import Callable, Optional

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from ..models.errors import AuthenticationError
from ..services.auth import get_auth_service
from ..utils.id_generator import generate_request_id

logger = structlog.get_logger(__name__)


class AuthenticationMiddleware:
    """Middleware for API key authentication.

    This middleware handles:
    - API key extraction from headers
    - API key validation
    - Setting authenticated state on request

    Rejected requests never reach the route handlers.
    """

    def __init__(self, app: Callable):
        self.app = app
        self.excluded_paths = {"/health", "/docs", "/redoc", "/openapi.json"}

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        """Process request through authentication middleware."""
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)

        # Skip auth for excluded paths and OPTIONS
        if self._should_skip_auth(request):
            await self.app(scope, receive, send)
            return

        api_key = self._extract_api_key(request)
        auth_service = get_auth_service()

        if not auth_service.validate_api_key(api_key, client_ip=self._get_client_ip(request)):
            error = AuthenticationError(
                "Invalid or missing API key", request_id=generate_request_id()
            )
            logger.warning(
                "Unauthorized request rejected",
                path=request.url.path,
                method=request.method,
                request_id=error.request_id,
            )
            response = JSONResponse(
                status_code=error.status_code,
                content=error.to_response().model_dump(),
                headers={"WWW-Authenticate": "Bearer"},
            )
            await response(scope, receive, send)
            return

        # Add authenticated state
        scope["state"] = scope.get("state", {})
        scope["state"]["authenticated"] = True

        await self.app(scope, receive, send)

    def _should_skip_auth(self, request: Request) -> bool:
        """Check if authentication should be skipped."""
        return request.url.path in self.excluded_paths or request.method == "OPTIONS"

    def _extract_api_key(self, request: Request) -> Optional[str]:
        """Extract API key from request headers."""
        auth_header = request.headers.get("authorization")
        if auth_header and auth_header.startswith("Bearer "):
            return auth_header[7:].strip()

        api_key = request.headers.get("x-api-key")
        if api_key:
            return api_key

        return None

    def _get_client_ip(self, request: Request) -> str:
        """Get client IP address."""
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        return request.client.host if request.client else "unknown"
