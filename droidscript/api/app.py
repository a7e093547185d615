"""FastAPI application factory for droidscript."""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..core.config import config
from ..core.logger import log
from .routes import EngineFactory, runs_router, scripts_router


def create_app(engine_factory: Optional[EngineFactory] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        engine_factory: Returns an ``ExecutionEngine`` bound to a device
            session; runs are refused with 503 when omitted.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="droidscript API",
        description="Scripted Android UI automation with AI-assisted recovery",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.engine_factory = engine_factory

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add request logging middleware
    @app.middleware("http")
    async def log_requests(request, call_next):
        log.info(f"API Request: {request.method} {request.url}")
        response = await call_next(request)
        log.info(f"API Response: {response.status_code}")
        return response

    # Include routers
    app.include_router(scripts_router, prefix="/api/v1/scripts", tags=["scripts"])
    app.include_router(runs_router, prefix="/api/v1/runs", tags=["runs"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "droidscript API",
            "version": __version__,
            "runs_enabled": app.state.engine_factory is not None,
        }

    log.info("FastAPI application created successfully")
    return app
