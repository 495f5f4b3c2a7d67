"""Middleware package for the Browser Sandbox Manager."""

from .auth import AuthenticationMiddleware
from .logging import RequestLoggingMiddleware

__all__ = ["AuthenticationMiddleware", "RequestLoggingMiddleware"]
