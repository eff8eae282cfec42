"""API routers."""

from app.routers.stats import router as stats_router
from app.routers.stories import router as stories_router

__all__ = ["stories_router", "stats_router"]
