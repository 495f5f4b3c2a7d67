"""Main FastAPI application for the Browser Sandbox Manager."""

# Standard library imports
import sys
from contextlib import asynccontextmanager

# Third-party imports
import structlog
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

# Local application imports
from ._version import __version__
from .api import containers, health
from .config import settings
from .middleware import AuthenticationMiddleware, RequestLoggingMiddleware
from .models.errors import SandboxManagerException, StoreError
from .services.container import DockerRuntimeClient
from .services.lifecycle import LifecycleManager
from .services.ports import PortAllocator
from .services.store import SQLiteRecordStore
from .utils.config_validator import validate_configuration, get_configuration_summary
from .utils.error_handlers import (
    sandbox_manager_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)
from .utils.logging import setup_logging
from .utils.shutdown import setup_graceful_shutdown, shutdown_handler


# Setup logging
setup_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup order: store, runtime, port allocator, lifecycle manager. The
    lifecycle manager reconciles persisted records before the app serves
    requests; until then the container endpoints answer 503.
    """
    # Startup
    logger.info("Starting Browser Sandbox Manager", version=__version__)

    setup_graceful_shutdown(app)

    if not validate_configuration():
        logger.error("Configuration validation failed - shutting down")
        sys.exit(1)

    if settings.dev_mode:
        logger.warning("DEV_MODE enabled - API authentication is disabled")
    elif settings.api_key_generated:
        # Shown once so operators can reach the API without configuring a key
        logger.warning(
            "No API_KEY configured, generated a random key for this run",
            api_key=settings.api_key,
        )

    if settings.api_debug:
        logger.warning("Debug mode is enabled - disable in production")

    # Record store
    record_store = SQLiteRecordStore(settings.store_path)
    try:
        await record_store.start()
    except StoreError as e:
        logger.error("Failed to open record store - shutting down", error=e.message, db_path=settings.store_path)
        sys.exit(1)
    app.state.record_store = record_store

    # Container runtime
    runtime = DockerRuntimeClient()
    if not await runtime.ping():
        logger.error(
            "Docker is not available - shutting down",
            error=runtime.get_initialization_error(),
        )
        await record_store.close()
        sys.exit(1)
    app.state.runtime = runtime

    # Port allocator and lifecycle manager
    ports = settings.ports
    allocator = PortAllocator(
        range_start=ports.range_start,
        range_end=ports.range_end,
        probe_attempts=ports.probe_attempts,
        bind_host=ports.bind_host,
    )
    lifecycle_manager = LifecycleManager(record_store, runtime, allocator)
    app.state.lifecycle_manager = lifecycle_manager

    summary = await lifecycle_manager.start()
    logger.info("Browser Sandbox Manager startup completed", reconcile=summary.to_dict())

    yield

    # Shutdown
    logger.info("Shutting down Browser Sandbox Manager")

    try:
        await shutdown_handler.shutdown()
    except Exception as e:
        logger.error("Error during graceful shutdown", error=str(e))

    logger.info("Browser Sandbox Manager shutdown completed")


# Create FastAPI app
app = FastAPI(
    title="Browser Sandbox Manager",
    description="Provisions short-lived browser sandbox containers with automatic expiry",
    version=__version__,
    docs_url="/docs" if settings.enable_docs else None,
    redoc_url="/redoc" if settings.enable_docs else None,
    debug=settings.api_debug,
    lifespan=lifespan,
)

# Add middleware (last added runs first)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(AuthenticationMiddleware)

# Add CORS middleware (conditionally)
if settings.enable_cors:
    origins = settings.cors_origins if settings.cors_origins else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    logger.info("CORS enabled", origins=origins)

# Register global error handlers
app.add_exception_handler(SandboxManagerException, sandbox_manager_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(ValidationError, validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)


@app.get("/config")
async def config_info():
    """Configuration information endpoint (non-sensitive data only)."""
    if not settings.api_debug:
        raise HTTPException(status_code=404, detail="Not found")

    return get_configuration_summary()


# Include routers (authentication handled by middleware)
app.include_router(health.router, tags=["health"])
app.include_router(containers.router, tags=["containers"])


def run_server():
    logger.info(f"Starting HTTP server on {settings.api_host}:{settings.api_port}")
    uvicorn.run(
        "sandbox_manager.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run_server()
