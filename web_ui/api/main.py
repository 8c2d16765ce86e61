"""
FlowTune Playback API - Main FastAPI Application

Exposes the playback session and royalty engine over HTTP:
- Session lifecycle (start / progress / end)
- Track stats, listening history and artist earnings
- Quality tiers and stream descriptors

The background expiry sweeper runs for the lifetime of the application.
"""

import os
import sys
from pathlib import Path
from contextlib import asynccontextmanager
from typing import Optional

# Add parent directory to path to import engine modules
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import Settings, settings as default_settings, DEFAULT_HOST, DEFAULT_PORT
from playback.catalog import InMemoryTrackCatalog
from playback.service import PlaybackService
from playback.sweeper import SessionSweeper
from utils.logger import logger
from web_ui.api.middleware.error_handlers import register_error_handlers
from web_ui.api.middleware.security_headers import SecurityHeadersMiddleware
from web_ui.api.routes import playback


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - start and stop the expiry sweeper"""
    sweeper: Optional[SessionSweeper] = app.state.sweeper
    if sweeper is not None:
        sweeper.start()
    logger.info(f"FlowTune Playback API ready on http://{DEFAULT_HOST}:{DEFAULT_PORT}")
    yield
    if sweeper is not None:
        sweeper.stop()
    logger.info("FlowTune Playback API shutting down...")


def create_app(
    service: Optional[PlaybackService] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        service: Engine instance wired to the real catalog and store. Defaults
            to an in-memory engine with an empty catalog.
        settings: Overrides the global settings
    """
    settings = settings or (service.settings if service else default_settings)
    service = service or PlaybackService(catalog=InMemoryTrackCatalog(), settings=settings)

    app = FastAPI(
        title="FlowTune Playback API",
        description="Playback sessions, verified plays and royalty accrual",
        version="1.0.0",
        lifespan=lifespan,
        redirect_slashes=False,
    )
    app.state.playback_service = service
    app.state.sweeper = (
        SessionSweeper(service.sweep_expired_sessions, interval=settings.SWEEP_INTERVAL_SECONDS)
        if settings.SWEEPER_ENABLED
        else None
    )

    cors_origins = [
        origin.strip()
        for origin in os.getenv("FLOWTUNE_CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
        if origin.strip()
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Accept",
            "Authorization",
            "Content-Type",
            "Origin",
            "X-Request-ID",
        ],
        expose_headers=[
            "X-Request-ID",
            "Retry-After",
        ],
    )
    app.add_middleware(SecurityHeadersMiddleware)

    register_error_handlers(app)
    app.include_router(playback.router, prefix="/api/v1/audio", tags=["Playback"])

    @app.get("/")
    async def root():
        """API root endpoint"""
        return {
            "name": "FlowTune Playback API",
            "version": "1.0.0",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=DEFAULT_PORT)
