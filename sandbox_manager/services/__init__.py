"""Services for the Browser Sandbox Manager."""

from .auth import AuthenticationService, get_auth_service
from .expiry import ExpiryScheduler
from .lifecycle import LifecycleManager
from .ports import PortAllocator
from .store import SQLiteRecordStore

__all__ = [
    "AuthenticationService",
    "get_auth_service",
    "ExpiryScheduler",
    "LifecycleManager",
    "PortAllocator",
    "SQLiteRecordStore",
]
