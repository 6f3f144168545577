"""FastAPI application for the Storywright story workflow."""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storywright import __version__
from storywright.c1_database_session import DatabaseManager
from storywright.c1_database_session.database_manager import resolve_database_path
from storywright.c3_health_routes import router as health_router
from storywright.c3_prd_routes import create_prd_router
from storywright.core.config import Settings, get_settings
from storywright.interfaces import close_completion_provider

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application with its routers and startup hooks.

    Args:
        settings: Settings to use; the global settings when omitted

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Storywright",
        description="PRD and user-story workflow with AI refinement and prioritization",
        version=__version__,
    )

    if settings.server.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(health_router)
    app.include_router(create_prd_router())

    @app.on_event("startup")
    async def startup_event():
        """Create tables and indexes on startup."""
        database_path = resolve_database_path()
        logger.info(f"Starting Storywright server (database: {database_path})")
        db_manager = DatabaseManager(database_path)
        db_manager.create_tables()
        db_manager.dispose()

    @app.on_event("shutdown")
    async def shutdown_event():
        """Close the shared completion provider."""
        await close_completion_provider()

    return app
