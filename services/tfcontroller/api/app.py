"""
FastAPI application factory for the Terraform controller.

Uses lifespan handler for startup/shutdown: builds the Kubernetes clients,
backend registry and sync pipeline, and runs the reconcile loop alongside
the HTTP sync trigger.
"""

import asyncio
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tfcontroller import __version__
from tfcontroller.api.dependencies import Components
from tfcontroller.backends import default_registry
from tfcontroller.config import Settings, settings
from tfcontroller.kube import create_clients
from tfcontroller.logging_config import configure_logging, get_logger
from tfcontroller.runner.pod_manager import PodLifecycleManager
from tfcontroller.sync.coordinator import SyncCoordinator
from tfcontroller.sync.scheduler import ReconcileScheduler
from tfcontroller.sync.status import StatusReporter

from .health import router as health_router
from .routers.sync import router as sync_router

logger = get_logger(__name__)


def build_components(cfg: Settings) -> Components:
    """Wire the sync pipeline from explicit clients and configuration."""
    clients = create_clients()
    registry = default_registry()
    coordinator = SyncCoordinator(
        pods=PodLifecycleManager(clients.core, cfg.runner),
        registry=registry,
        reporter=StatusReporter(clients.custom, cfg.crd),
        settings=cfg,
    )
    scheduler = ReconcileScheduler(coordinator, clients.custom, cfg.crd, cfg.reconcile)
    return Components(
        clients=clients, registry=registry, coordinator=coordinator, scheduler=scheduler
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan handler for startup and shutdown."""
    # Startup
    configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)
    logger.info("Starting Terraform controller", version=__version__)

    components = build_components(settings)
    app.state.components = components
    logger.info("Controller components initialized", backends=components.registry.names())

    reconcile_task = None
    if settings.reconcile.enabled:
        reconcile_task = asyncio.create_task(components.scheduler.run())
        logger.info("Reconcile loop started", interval=settings.reconcile.interval_seconds)

    yield

    # Shutdown
    logger.info("Shutting down Terraform controller")
    await components.scheduler.stop()
    if reconcile_task is not None:
        reconcile_task.cancel()
        try:
            await reconcile_task
        except asyncio.CancelledError:
            pass
        logger.info("Reconcile loop stopped")
    app.state.components = None


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Terraform Controller",
        description="Reconciles Terraform custom resources with build and run pods",
        version=__version__,
        lifespan=lifespan,
    )

    # Request ID middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Ensure every request has a request ID for logging correlation."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        structlog.contextvars.unbind_contextvars("request_id")

        return response

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled errors."""
        logger.error("Unhandled exception", exc_info=exc, path=str(request.url.path))
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    app.include_router(health_router)
    app.include_router(sync_router)

    return app


# Application instance
app = create_app()
