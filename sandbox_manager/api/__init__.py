"""API endpoints for the Browser Sandbox Manager."""

from . import containers, health

__all__ = ["containers", "health"]
