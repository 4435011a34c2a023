# src/usage_stats/main.py
"""Main entry point for the usage statistics service."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from usage_stats.api.v1 import stats_router
from usage_stats.core.settings import settings
from usage_stats.services.scheduler import VisitsScheduler

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Usage and retention statistics for the account service",
    version=settings.app_version,
)

# Include API routers
app.include_router(stats_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    if settings.visits_scheduler_enabled:
        scheduler = VisitsScheduler()
        await scheduler.start()
        app.state.visits_scheduler = scheduler
        logger.info(
            "Daily visit materialization scheduled every %.0fs after %.0fs",
            scheduler.interval,
            scheduler.initial_delay,
        )
    else:
        app.state.visits_scheduler = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    scheduler: VisitsScheduler | None = getattr(app.state, "visits_scheduler", None)
    if scheduler:
        await scheduler.stop()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the service."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("usage_stats.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
