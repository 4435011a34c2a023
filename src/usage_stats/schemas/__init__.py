"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .stats import DatabaseEngine, UsageSnapshot, UserStatisticsResponse, VisitsStatusResponse

__all__ = [
    "DatabaseEngine",
    "UsageSnapshot",
    "UserStatisticsResponse",
    "VisitsStatusResponse",
]
