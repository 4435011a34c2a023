"""Business logic services for the usage statistics engine."""

from .platform import Platform, PlatformVariant, classify
from .scheduler import VisitsScheduler
from .statistics import user_statistics
from .visits import VisitLedger, Watermark

__all__ = [
    "Platform",
    "PlatformVariant",
    "classify",
    "VisitsScheduler",
    "user_statistics",
    "VisitLedger",
    "Watermark",
]
