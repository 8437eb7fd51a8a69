"""
Cortex Ingest - Main FastAPI Application

Operational surface for the incremental ingestion pipeline:
- Health of the fingerprint store and queue
- Runtime watch source management
- Reload and rescan triggers
- Fingerprint and duplicate-content lookups
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from app.api import admin, fingerprints, health, sources
from app.utils.config import get_settings
from app.utils.log import setup_logging
from domains.file_ingest.pipeline import IngestionPipeline


def create_app(pipeline: Optional[IngestionPipeline] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        pipeline: Already running pipeline to serve. When omitted the
            application builds one from settings and owns its lifecycle.
    """
    settings = pipeline.settings if pipeline else get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info(f"Starting {settings.api_title} v{settings.api_version}")

        owned = pipeline is None
        active = pipeline or IngestionPipeline(settings)
        if owned:
            try:
                failures = active.start()
            except Exception as e:
                logger.error(f"Failed to start ingestion pipeline: {e}")
                active.shutdown()
                raise
            for source_id, error in failures.items():
                logger.error(f"Source {source_id} not started: {error}")
        app.state.pipeline = active

        yield

        # Cleanup
        logger.info("Shutting down application...")
        app.state.pipeline = None
        if owned:
            active.shutdown()
        logger.success("Application shut down complete")

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="Incremental file ingestion and insight extraction",
        lifespan=lifespan
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.log_level == "DEBUG" else "An error occurred"
            }
        )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(sources.router, prefix="/sources", tags=["Sources"])
    app.include_router(admin.router, prefix="/admin", tags=["Admin"])
    app.include_router(fingerprints.router, prefix="/fingerprints", tags=["Fingerprints"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "Cortex Ingest",
            "version": settings.api_version,
            "status": "operational",
            "docs": "/docs",
            "health": "/health"
        }

    return app


settings = get_settings()
setup_logging(settings.log_level)
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower()
    )
