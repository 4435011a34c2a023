# src/usage_stats/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .stats import router as stats_router

__all__ = [
    "stats_router",
]
