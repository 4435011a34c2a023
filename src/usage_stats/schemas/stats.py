"""Pydantic schemas for usage statistics snapshots."""
from __future__ import annotations

from pydantic import BaseModel, Field


class UsageSnapshot(BaseModel):
    """Point-in-time usage counters for the service."""

    all_users: int = 0
    daily_users: int = 0
    monthly_users: int = 0
    non_bridged_users: int = 0
    registered_users_by_type: dict[str, int] = Field(default_factory=dict)
    r30_users: dict[str, int] = Field(default_factory=dict)
    r30_users_v2: dict[str, int] = Field(
        default_factory=lambda: {"ios": 0, "android": 0, "web": 0, "electron": 0, "all": 0}
    )


class DatabaseEngine(BaseModel):
    """Product name and version of the backing database."""

    engine: str
    version: str = "unknown"


class UserStatisticsResponse(BaseModel):
    """Response body for the user statistics endpoint."""

    stats: UsageSnapshot
    database: DatabaseEngine


class VisitsStatusResponse(BaseModel):
    """State of the daily visit materialization."""

    running: bool
    last_materialized_at: str = Field(..., description="ISO 8601 watermark timestamp.")
