"""Graceful shutdown handling for the application."""

import asyncio
from typing import Awaitable, Callable, List

import structlog
from fastapi import FastAPI

logger = structlog.get_logger(__name__)

CALLBACK_TIMEOUT_SECONDS = 10.0


class GracefulShutdownHandler:
    """Runs registered shutdown callbacks once, newest first."""

    def __init__(self, callback_timeout: float = CALLBACK_TIMEOUT_SECONDS):
        self._shutdown_callbacks: List[Callable[[], Awaitable[None]]] = []
        self._is_shutting_down = False
        self._shutdown_lock = asyncio.Lock()
        self.callback_timeout = callback_timeout

    @property
    def is_shutting_down(self) -> bool:
        return self._is_shutting_down

    def add_shutdown_callback(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Add a callback to be executed during shutdown."""
        self._shutdown_callbacks.append(callback)

    def reset(self) -> None:
        """Forget callbacks and allow another shutdown (app restarts in tests)."""
        self._shutdown_callbacks.clear()
        self._is_shutting_down = False

    async def shutdown(self) -> None:
        """Perform graceful shutdown."""
        async with self._shutdown_lock:
            if self._is_shutting_down:
                return

            self._is_shutting_down = True
            logger.info("Starting graceful shutdown")

            for callback in reversed(self._shutdown_callbacks):
                callback_name = getattr(callback, "__name__", str(callback))
                try:
                    await asyncio.wait_for(callback(), timeout=self.callback_timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        "Shutdown callback timed out",
                        callback=callback_name,
                        timeout=self.callback_timeout,
                    )
                except Exception as e:
                    logger.error(
                        "Error in shutdown callback", callback=callback_name, error=str(e)
                    )

            logger.info("Graceful shutdown completed")


# Global shutdown handler instance
shutdown_handler = GracefulShutdownHandler()


def setup_graceful_shutdown(app: FastAPI) -> None:
    """Register shutdown callbacks for the services stored on ``app.state``.

    Callbacks run in reverse registration order: timers stop first, then the
    store closes, then the Docker client.
    """

    async def close_runtime() -> None:
        runtime = getattr(app.state, "runtime", None)
        if runtime is not None:
            runtime.close()
            logger.info("Container runtime client closed")

    async def close_record_store() -> None:
        store = getattr(app.state, "record_store", None)
        if store is not None:
            await store.close()
            logger.info("Record store closed")

    async def stop_lifecycle_manager() -> None:
        manager = getattr(app.state, "lifecycle_manager", None)
        if manager is not None:
            await manager.shutdown()

    shutdown_handler.reset()
    shutdown_handler.add_shutdown_callback(close_runtime)
    shutdown_handler.add_shutdown_callback(close_record_store)
    shutdown_handler.add_shutdown_callback(stop_lifecycle_manager)

    logger.info("Graceful shutdown handling configured")
