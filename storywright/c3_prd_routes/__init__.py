"""C3 PRD Routes - HTTP surface for the story workflow."""
from storywright.c3_prd_routes.prd_routes import create_prd_router
__all__ = ["create_prd_router"]
