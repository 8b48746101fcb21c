"""FastAPI application factory and lifecycle management."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from subscription_sync import __version__
from subscription_sync.config import Config
from subscription_sync.container import ServiceContainer, build_container
from subscription_sync.logging_config import configure_logging, get_logger
from subscription_sync.middleware import ContextMiddleware, RequestLoggingMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log startup and release the container's clients on shutdown."""
    container: ServiceContainer = app.state.container
    logger.info(
        "service_starting",
        version=__version__,
        gateway_configured=container.gateway.is_configured(),
        notifications_enabled=container.dispatcher.is_enabled(),
    )

    try:
        logger.info("service_started", status="ready")
        yield
    finally:
        logger.info("service_shutting_down")
        container.shutdown()
        logger.info("service_stopped")


def create_app(
    config: Optional[Config] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Loaded configuration (read from CONFIG_PATH when omitted)
        container: Pre-built service container (tests inject one with a
            frozen clock and mocked clients)

    Returns:
        Configured FastAPI application instance
    """
    log_level = os.getenv("LOG_LEVEL", "INFO")
    json_format = os.getenv("LOG_FORMAT", "json").lower() == "json"
    configure_logging(log_level=log_level, json_format=json_format)

    if container is None:
        container = build_container(config or Config())

    app = FastAPI(
        title="Subscription Sync",
        description="Subscription lifecycle state machine with billing webhook reconciliation",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    include_request_details = os.getenv("LOG_REQUEST_DETAILS", "true").lower() == "true"
    app.add_middleware(RequestLoggingMiddleware, include_request_details=include_request_details)
    app.add_middleware(ContextMiddleware)

    from subscription_sync.api.anonymous import router as anonymous_router
    from subscription_sync.api.checkout import router as checkout_router
    from subscription_sync.api.subscriptions import router as subscriptions_router
    from subscription_sync.api.webhooks import router as webhooks_router

    app.include_router(webhooks_router)
    app.include_router(subscriptions_router)
    app.include_router(checkout_router)
    app.include_router(anonymous_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Liveness endpoint."""
        logger.debug("root_endpoint_called")
        return {
            "service": "subscription-sync",
            "status": "running",
            "version": __version__,
        }

    @app.get("/health")
    async def health(request: Request) -> dict[str, str]:
        """Detailed health check."""
        current: ServiceContainer = request.app.state.container
        return {
            "status": "healthy",
            "pubsub": "connected" if current.dispatcher.is_enabled() else "disabled",
            "gateway": (
                f"configured ({current.config.gateway.environment.value})"
                if current.gateway.is_configured()
                else "unconfigured"
            ),
            "profiles": str(current.profile_store.count()),
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    logger.info("app_created", endpoints=len(app.routes))
    return app
