"""Authentication service.

A single shared bearer secret protects every mutating endpoint. The check can
be disabled with DEV_MODE for local development only.
"""

# Standard library imports
import hmac
from functools import lru_cache
from typing import Optional

# Third-party imports
import structlog

# Local application imports
from ..config import settings
from ..utils.logging import log_security_event

logger = structlog.get_logger(__name__)


class AuthenticationService:
    """Validates the shared API key in constant time."""

    def __init__(self, api_key: Optional[str] = None, dev_mode: Optional[bool] = None):
        self._api_key = api_key if api_key is not None else settings.api_key
        self.dev_mode = settings.dev_mode if dev_mode is None else dev_mode

    def validate_api_key(self, api_key: Optional[str], client_ip: str = "unknown") -> bool:
        """Check a presented key against the configured secret.

        Args:
            api_key: Key extracted from the request, or None if absent
            client_ip: Caller address, for security logging

        Returns:
            True if the request may proceed
        """
        if self.dev_mode:
            return True

        if not api_key:
            log_security_event("missing_api_key", client_ip)
            return False

        if not hmac.compare_digest(api_key.encode("utf-8"), self._api_key.encode("utf-8")):
            log_security_event("invalid_api_key", client_ip, key_prefix=api_key[:4] + "...")
            return False

        return True


@lru_cache()
def get_auth_service() -> AuthenticationService:
    """Get the process-wide authentication service."""
    return AuthenticationService()
