"""C3 Health Routes."""
from storywright.c3_health_routes.health_routes import router
__all__ = ["router"]
