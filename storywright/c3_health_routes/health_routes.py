"""Health check routes for the Storywright server."""

from datetime import datetime
from fastapi import APIRouter

from storywright import __version__
from storywright.core.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Health check endpoint.

    Returns:
        dict: Health status, timestamp, version and the configured completion provider
    """
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__,
        "llm_provider": get_settings().llm.provider,
    }
