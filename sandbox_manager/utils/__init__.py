"""Utility modules for the Browser Sandbox Manager."""

from .logging import setup_logging

__all__ = [
    "setup_logging",
]
