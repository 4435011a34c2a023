# src/usage_stats/models/daily_visit.py
"""Per-user, per-device, per-day visit facts."""

from sqlalchemy import BigInteger, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from usage_stats.db.session import Base


class DailyVisit(Base):
    """One row for every device a user was active on during a given day.

    Rows are only ever inserted by the visit ledger, never updated.
    """

    __tablename__ = "user_daily_visits"
    __table_args__ = (
        Index("timestamp_idx", "timestamp"),
        Index("localpart_timestamp_idx", "localpart", "timestamp"),
    )

    # Composite primary key allows a single row per device per day.
    localpart: Mapped[str] = mapped_column(Text, primary_key=True)
    device_id: Mapped[str] = mapped_column(Text, primary_key=True)
    # Start of the UTC day, in milliseconds since the Unix epoch.
    timestamp: Mapped[int] = mapped_column(BigInteger, primary_key=True)

    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
