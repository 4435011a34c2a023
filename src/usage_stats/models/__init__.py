# src/usage_stats/models/__init__.py
"""SQLAlchemy models for the usage statistics service."""

from .account import Account, AccountType
from .daily_visit import DailyVisit
from .device import Device

__all__ = [
    "Account", "AccountType",
    "DailyVisit",
    "Device",
]
