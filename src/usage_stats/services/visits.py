"""Materialization of daily visit facts from device activity.

Devices only remember when they were last seen, so history is built up by
periodically copying every device active since the previous run into
``user_daily_visits``. The copy is keyed by day, which makes it safe to run
over overlapping windows: a device already recorded for the day is left
untouched.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import BigInteger, exists, func, insert, literal, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from usage_stats.core.errors import StoreError
from usage_stats.db.session import SessionLocal
from usage_stats.db.time import ONE_DAY, as_timestamp, ensure_utc, truncate_day, utcnow
from usage_stats.models import Account, AccountType, DailyVisit, Device

logger = logging.getLogger(__name__)

# Only real people count towards visits: guests and bridged bots are skipped.
VISITING_ACCOUNT_TYPES = (int(AccountType.USER), int(AccountType.ADMIN))


@dataclass
class Watermark:
    """Boundary up to which device activity has already been materialized.

    Only the owning :class:`VisitLedger` writes it.
    """

    last_materialized_at: datetime = field(default_factory=utcnow)


class VisitLedger:
    """Maintains the deduplicated daily visit facts."""

    def __init__(
        self, db_session: Session | None = None, watermark: Watermark | None = None
    ) -> None:
        """Initialize the ledger.

        Args:
            db_session: Optional database session. If None, creates new sessions as needed.
            watermark: Starting watermark. Defaults to the current time, so
                activity older than process start is not backfilled.
        """
        self.watermark = watermark or Watermark()
        self._db_session = db_session

    @staticmethod
    def materialize(
        db: Session, window_start: datetime, window_end: datetime, as_of: datetime
    ) -> int:
        """Record a visit for every device seen in ``[window_start, window_end)``.

        Visits are dated to the day containing ``as_of``. Keys that already
        have a visit for that day are skipped. The caller owns the transaction.

        Returns:
            Number of visits inserted.
        """
        day_ts = as_timestamp(truncate_day(as_of))
        already_recorded = exists().where(
            DailyVisit.localpart == Device.localpart,
            DailyVisit.device_id == Device.device_id,
            DailyVisit.timestamp == day_ts,
        )
        seen_devices = (
            select(
                Device.localpart,
                Device.device_id,
                literal(day_ts, BigInteger),
                func.max(Device.user_agent),
            )
            .join(Account, Account.localpart == Device.localpart)
            .where(
                Device.last_seen_ts >= as_timestamp(window_start),
                Device.last_seen_ts < as_timestamp(window_end),
                Account.account_type.in_(VISITING_ACCOUNT_TYPES),
                ~already_recorded,
            )
            .group_by(Device.localpart, Device.device_id)
        )
        result = db.execute(
            insert(DailyVisit).from_select(
                ["localpart", "device_id", "timestamp", "user_agent"],
                seen_devices,
            )
        )
        return max(result.rowcount or 0, 0)

    def update_daily_visits(self, now: datetime | None = None) -> int:
        """Materialize activity since the watermark and advance it.

        The first run after midnight still dates its visits to the previous
        day, since that activity happened before the boundary was crossed.

        Raises:
            StoreError: If the insert fails. The watermark is left unchanged so
                the next run covers the missed window as well.
        """
        now = ensure_utc(now or utcnow())
        last_update = ensure_utc(self.watermark.last_materialized_at)
        as_of = truncate_day(now)
        if as_of > last_update:
            as_of -= ONE_DAY

        if self._db_session:
            written = self._materialize_with_session(self._db_session, last_update, now, as_of)
        else:
            with SessionLocal() as db:
                written = self._materialize_with_session(db, last_update, now, as_of)

        self.watermark.last_materialized_at = now
        logger.info(
            "Recorded %d daily visits for %s (window %s to %s)",
            written,
            as_of.date().isoformat(),
            last_update.isoformat(),
            now.isoformat(),
        )
        return written

    def _materialize_with_session(
        self, db: Session, window_start: datetime, window_end: datetime, as_of: datetime
    ) -> int:
        try:
            written = self.materialize(db, window_start, window_end, as_of)
            db.commit()
        except SQLAlchemyError as exc:
            # The connection may already be gone; report the original failure.
            with contextlib.suppress(SQLAlchemyError):
                db.rollback()
            raise StoreError("failed to update daily user visits") from exc
        return written
