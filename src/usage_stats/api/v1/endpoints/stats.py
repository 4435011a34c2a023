"""Usage statistics endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from usage_stats.core.errors import PartialResultError
from usage_stats.db.session import get_db
from usage_stats.schemas.stats import UserStatisticsResponse, VisitsStatusResponse
from usage_stats.services.scheduler import VisitsScheduler
from usage_stats.services.statistics import user_statistics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stats", tags=["stats"])

SessionDep = Annotated[Session, Depends(get_db)]


@router.get("/users", response_model=UserStatisticsResponse)
def get_user_statistics(db: SessionDep) -> UserStatisticsResponse:
    """Return a fresh usage statistics snapshot.

    Args:
        db: Database session

    Returns:
        Usage counters along with the database engine and version

    Raises:
        HTTPException: 503 if any of the underlying queries failed
    """
    try:
        stats, database = user_statistics(db)
    except PartialResultError as exc:
        logger.error("Failed to collect user statistics: %s", exc, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    return UserStatisticsResponse(stats=stats, database=database)


@router.get("/visits", response_model=VisitsStatusResponse)
def get_visits_status(request: Request) -> VisitsStatusResponse:
    """Report the daily visit materialization watermark."""
    scheduler: VisitsScheduler | None = getattr(request.app.state, "visits_scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Daily visit materialization is disabled",
        )
    return VisitsStatusResponse(
        running=scheduler.running,
        last_materialized_at=scheduler.ledger.watermark.last_materialized_at.isoformat(),
    )
