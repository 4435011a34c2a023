# src/usage_stats/models/device.py
"""Read-only mapping of the device table kept up to date by the device service."""

from sqlalchemy import BigInteger, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from usage_stats.db.session import Base


class Device(Base):
    """A login session for an account, with its most recent activity."""

    __tablename__ = "device_devices"
    __table_args__ = (Index("ix_device_devices_last_seen_ts", "last_seen_ts"),)

    localpart: Mapped[str] = mapped_column(Text, primary_key=True)
    device_id: Mapped[str] = mapped_column(Text, primary_key=True)
    last_seen_ts: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
