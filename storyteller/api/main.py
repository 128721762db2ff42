"""
storyteller/api/main.py
FastAPI application served by the HTTP listener.

Architecture:
- Thin app factory (routes + middleware only)
- Process lifecycle lives in storyteller.lifecycle, not in FastAPI's lifespan
- Health probes read the lifecycle manager attached to app.state
"""

from typing import Optional

from fastapi import FastAPI, Request

from ..core.config import Settings, get_settings
from ..core.logging import get_logger
from ..lifecycle.health_registry import HealthRegistry, get_health_registry
from .middleware import InFlightMiddleware, InFlightTracker
from .routes import health, metrics

logger = get_logger("api")


def create_app(
    settings: Optional[Settings] = None,
    tracker: Optional[InFlightTracker] = None,
    health_registry: Optional[HealthRegistry] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    The lifecycle manager is attached afterwards as
    ``app.state.lifecycle_manager`` by the bootstrap code.
    """
    settings = settings or get_settings()

    logger.info(
        "creating_app",
        name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="The Story Teller service",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.state.settings = settings
    app.state.tracker = tracker or InFlightTracker()
    app.state.health_registry = health_registry or get_health_registry()
    app.state.lifecycle_manager = None

    app.add_middleware(InFlightMiddleware, tracker=app.state.tracker)

    app.include_router(health.router)
    if settings.METRICS_ENABLED:
        app.include_router(metrics.router)

    @app.get("/", tags=["Root"])
    async def root(request: Request):
        """Service info endpoint"""
        manager = request.app.state.lifecycle_manager
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": manager.state.value if manager else "unmanaged",
            "endpoints": {
                "health": "/api/v1/health",
                "ready": "/api/v1/health/ready",
                "metrics": "/metrics" if settings.METRICS_ENABLED else None,
            }
        }

    logger.info("app_created_successfully")
    return app


__all__ = ["create_app"]
