"""
Main FastAPI application for the event discovery ingestion service.
"""
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from event_discovery.api.errors import (
    ApiError,
    api_error_handler,
    http_error_handler,
    ingestion_error_handler,
)
from event_discovery.api.routes import router
from event_discovery.config import get_settings
from event_discovery.core.logging import configure_logging
from event_discovery.services.ingestion.errors import IngestionError
from event_discovery.services.ingestion.runtime import build_runtime

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - handles startup and shutdown."""
    settings = get_settings()
    configure_logging(settings.log_level, json_output=settings.log_json)

    logger.info("app.starting", environment=settings.environment, database=settings.database_url)
    runtime = build_runtime(settings)
    await runtime.start()
    app.state.runtime = runtime
    logger.info("app.ready", sources=runtime.registry.ids())

    yield

    logger.info("app.shutting_down")
    await runtime.close()


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Fetches venue and event data from external providers on a schedule.",
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["X-API-Key", "Content-Type"],
    )

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(IngestionError, ingestion_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    @app.get("/api/v1/health")
    async def health_check():
        """Liveness probe; never requires an API key."""
        runtime = getattr(app.state, "runtime", None)
        return {
            "status": "healthy",
            "service": "event-discovery",
            "version": settings.app_version,
            "workers": runtime.pool.get_status() if runtime else None,
            "scheduler": runtime.scheduler.is_running if runtime else False,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "event_discovery.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
