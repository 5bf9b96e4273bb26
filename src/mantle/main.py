"""FastAPI application entry point.

Configures the webhook receiver, the repository ingestion API and the
operational endpoints.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from mantle import __version__
from mantle.api.health import router as health_router
from mantle.api.repos import router as repos_router
from mantle.api.seed import router as seed_router
from mantle.api.webhooks.github import router as github_router
from mantle.config import Settings, get_settings
from mantle.core.logging import setup_logging
from mantle.database import Database
from mantle.observability.middleware import CorrelationIdMiddleware, PrometheusMetricsMiddleware
from mantle.observability.tracing import init_tracing
from mantle.services.seed import SeedLoader

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager for startup/shutdown events."""
    setup_logging()
    settings: Settings = app.state.settings
    init_tracing(service_name="mantle-api")
    logger.info(
        "Mantle starting",
        extra={
            "version": __version__,
            "environment": settings.environment,
        },
    )

    database = Database.from_settings(settings)
    app.state.database = database
    app.state.seed_loader = SeedLoader(database) if settings.seed_available else None
    if app.state.seed_loader is not None:
        logger.info("Seed scenarios enabled")

    yield

    logger.info("Mantle shutting down")
    await database.close()
    logger.info("Mantle shutdown complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Application factory for creating the FastAPI app.

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Mantle",
        description="GitHub App webhook receiver and repository ingestion service",
        version=__version__,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(PrometheusMetricsMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        """Handle Pydantic validation errors."""
        logger.warning(
            "Request validation failed",
            extra={"errors": exc.errors(), "path": request.url.path},
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": exc.errors()},
        )

    app.include_router(health_router)
    app.include_router(github_router)
    app.include_router(repos_router, prefix=settings.api_prefix)
    app.include_router(seed_router, prefix=settings.api_prefix)

    @app.get("/")
    async def root() -> dict:
        """Root endpoint with API info."""
        return {
            "name": "Mantle",
            "version": __version__,
            "docs": "/docs" if not settings.is_production else None,
        }

    return app


app = create_app()
