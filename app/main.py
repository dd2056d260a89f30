"""
Scribe - Status API

Read-only view of a running pipeline:
- Health (accepting work, queue depth, worker count)
- Dedup ledger counts and record lookup

Served in-process next to the pipeline so the ledger is only ever read
through its own methods.
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from app.api import health, ledger
from app.utils.config import Settings, get_settings
from domains.media_scribe.pipeline import ScribePipeline


def create_app(pipeline: ScribePipeline, settings: Optional[Settings] = None) -> FastAPI:
    """Build the status app bound to ``pipeline``; ``settings`` defaults to the environment."""
    settings = settings or get_settings()
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="Status of the media transcription pipeline",
    )
    app.state.pipeline = pipeline

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

    app.include_router(health.router, tags=["Health"])
    app.include_router(ledger.router, prefix="/ledger", tags=["Ledger"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "Scribe",
            "version": settings.api_version,
            "status": "operational" if pipeline.accepting else "stopped",
            "backends": pipeline.selection.describe(),
            "docs": "/docs",
            "health": "/health"
        }

    return app


def build_server(app: FastAPI, host: str, port: int) -> uvicorn.Server:
    """Uvicorn server for the status app; the caller awaits ``serve()``."""
    config = uvicorn.Config(app, host=host, port=port, log_level="warning")
    logger.info(f"Status API listening on http://{host}:{port}")
    return uvicorn.Server(config)
