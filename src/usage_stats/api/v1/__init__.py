"""Version 1 API endpoints."""

from .endpoints import stats_router

__all__ = [
    "stats_router",
]
