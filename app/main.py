"""
Application entry point.

Creates the FastAPI application and wires together:
- Routers (recommendations, realtime streaming, health)
- Error handlers (centralized domain-to-HTTP mapping)
- Security middleware (headers, rate limiting)
- Logging configuration
- Outcome monitor lifecycle

No business logic belongs here.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from app.core.config import settings
from app.interfaces.health import router as health_router
from app.interfaces.realtime import router as realtime_router
from app.interfaces.realtime import set_realtime_components
from app.interfaces.recommendation.dependencies import get_container
from app.interfaces.recommendation.router import router as recommendation_router
from app.shared.errors.handlers import register_error_handlers
from app.shared.logging import configure_logging
from app.shared.security.headers import SecurityHeadersMiddleware
from app.shared.security.rate_limiting import limiter, rate_limit_exceeded_handler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: wire streaming and start/stop the outcome monitor."""
    # Honour test overrides of the container.
    container = app.dependency_overrides.get(get_container, get_container)()
    set_realtime_components(container.stream, container.monitor)

    if settings.outcome_monitor_enabled:
        container.monitor.start()
    else:
        logger.info("Outcome monitor disabled; outcomes must be reported via the API.")

    yield

    # Shutdown
    if container.monitor.is_running:
        container.monitor.stop()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Registers routers, error handlers, and security middleware.
    This is the composition root of the application.

    Returns:
        A fully configured FastAPI application instance.
    """
    configure_logging(level=settings.log_level)

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # --- Rate Limiting ---
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # --- Security Middleware ---
    app.add_middleware(SecurityHeadersMiddleware)

    # --- Error Handlers ---
    register_error_handlers(app)

    # --- Routers ---
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(recommendation_router, prefix="/api/v1")
    app.include_router(realtime_router, prefix="/api/v1")

    return app


app = create_app()
