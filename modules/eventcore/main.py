"""
FastAPI Application Entry Point.

Serves the event monitoring API and health checks. The API process also
publishes: retries and dead-letter reprocessing go through the same
publisher the worker uses, so it connects the event broker on startup.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from modules.eventcore.api import health
from modules.eventcore.api.v1 import router as api_v1_router
from modules.eventcore.core.config import get_app_config
from modules.eventcore.core.exception_handlers import register_exception_handlers
from modules.eventcore.core.logging import get_logger, setup_logging
from modules.eventcore.core.middleware import RequestContextMiddleware

logger = get_logger(__name__)

_app: FastAPI | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    app_config = get_app_config()
    setup_logging(level=app_config.logging.level)

    services = getattr(app.state, "event_services", None)
    if services is None:
        from modules.eventcore.services.factory import build_event_services
        services = build_event_services()
        app.state.event_services = services
    await services.broker_client.connect()

    logger.info(
        "Application starting",
        extra={
            "app_name": app_config.application.name,
            "env": app_config.application.environment,
        },
    )
    yield
    logger.info("Application shutting down")

    await services.broker_client.close()
    from modules.eventcore.core.database import dispose_engine
    await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app_config = get_app_config()
    app_settings = app_config.application
    features = app_config.features

    app = FastAPI(
        title=app_settings.name,
        description=app_settings.description,
        version=app_settings.version,
        docs_url="/docs" if app_settings.docs_enabled else None,
        redoc_url="/redoc" if app_settings.docs_enabled else None,
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware, log_requests=features.api_request_logging)

    cors_origins = app_settings.cors.origins
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app, detailed_errors=features.api_detailed_errors)

    app.include_router(health.router, tags=["health"])
    if features.monitoring_api_enabled:
        app.include_router(api_v1_router, prefix=app_settings.api_prefix)
    else:
        logger.info("Event monitoring API disabled by feature flag")

    return app


def get_app() -> FastAPI:
    """
    Get the application instance (lazy initialization).

    This function creates the app on first call and caches it.
    Use this instead of importing `app` directly to avoid
    import-time configuration errors.
    """
    global _app
    if _app is None:
        _app = create_app()
    return _app


# For uvicorn: `uvicorn modules.eventcore.main:app`
def __getattr__(name: str) -> FastAPI:
    """Support lazy access to `app` for uvicorn compatibility."""
    if name == "app":
        return get_app()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
