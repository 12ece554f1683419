from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from trendle_api.core.settings import settings
from trendle_api.db.session import engine
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Points core starting",
        environment=settings.environment,
        notifications_enabled=settings.notifications_enabled,
        checkin_radius_meters=settings.checkin_radius_meters,
    )
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Points core stopped")


def create_app() -> FastAPI:
    """Application factory for the Trendle points core service."""
    configure_logging(
        service_name="trendle-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Trendle Points API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="trendle-api",
        service_version=APP_VERSION,
        environment=settings.environment,
        exporter=settings.otel_exporter,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
