# tests/test_visits.py
"""Tests for daily visit materialization."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from usage_stats.core.errors import StoreError
from usage_stats.db.time import as_timestamp, truncate_day
from usage_stats.models import AccountType, DailyVisit
from usage_stats.services.visits import VisitLedger, Watermark

FIREFOX = "Mozilla/5.0 (X11; Linux x86_64; rv:109.0) Gecko/20100101 Firefox/118.0"


def _visits(db: Session) -> list[DailyVisit]:
    return list(
        db.scalars(select(DailyVisit).order_by(DailyVisit.localpart, DailyVisit.device_id))
    )


def _visit_count(db: Session) -> int:
    return db.execute(select(func.count()).select_from(DailyVisit)).scalar_one()


def test_materialize_records_active_user_and_admin_devices(
    db_session: Session, now: datetime, make_account, make_device
) -> None:
    """Devices of users and admins seen inside the window get a visit for the day."""
    make_account("alice", created=now - timedelta(days=3))
    make_account("root", created=now - timedelta(days=3), account_type=AccountType.ADMIN)
    make_device("alice", "PHONE", last_seen=now - timedelta(hours=1), user_agent=FIREFOX)
    make_device("alice", "LAPTOP", last_seen=now - timedelta(minutes=5))
    make_device("root", "CONSOLE", last_seen=now - timedelta(hours=2), user_agent="curl/8.4.0")

    written = VisitLedger.materialize(db_session, now - timedelta(hours=3), now, now)
    db_session.commit()

    assert written == 3
    visits = _visits(db_session)
    day = as_timestamp(truncate_day(now))
    assert [(v.localpart, v.device_id, v.timestamp) for v in visits] == [
        ("alice", "LAPTOP", day),
        ("alice", "PHONE", day),
        ("root", "CONSOLE", day),
    ]
    assert visits[1].user_agent == FIREFOX
    assert visits[0].user_agent is None


def test_materialize_skips_guests_and_appservices(
    db_session: Session, now: datetime, make_account, make_device
) -> None:
    make_account("guest", created=now, account_type=AccountType.GUEST)
    make_account(
        "bot", created=now, account_type=AccountType.APPSERVICE, appservice_id="irc"
    )
    make_device("guest", "G", last_seen=now - timedelta(minutes=1))
    make_device("bot", "B", last_seen=now - timedelta(minutes=1))

    assert VisitLedger.materialize(db_session, now - timedelta(hours=1), now, now) == 0
    assert _visit_count(db_session) == 0


def test_materialize_window_is_half_open(
    db_session: Session, now: datetime, make_account, make_device
) -> None:
    """The window includes its start and excludes its end."""
    start = now - timedelta(hours=3)
    make_account("alice", created=now - timedelta(days=1))
    make_device("alice", "AT_START", last_seen=start)
    make_device("alice", "BEFORE", last_seen=start - timedelta(milliseconds=1))
    make_device("alice", "AT_END", last_seen=now)

    VisitLedger.materialize(db_session, start, now, now)
    db_session.commit()

    assert [v.device_id for v in _visits(db_session)] == ["AT_START"]


def test_materialize_is_idempotent_over_overlapping_windows(
    db_session: Session, now: datetime, make_account, make_device
) -> None:
    make_account("alice", created=now - timedelta(days=1))
    make_device("alice", "PHONE", last_seen=now - timedelta(hours=1))

    assert VisitLedger.materialize(db_session, now - timedelta(hours=2), now, now) == 1
    db_session.commit()
    assert VisitLedger.materialize(db_session, now - timedelta(hours=6), now, now) == 0
    db_session.commit()

    assert _visit_count(db_session) == 1


def test_existing_visit_keeps_its_user_agent(
    db_session: Session, now: datetime, make_account, make_device
) -> None:
    """A later run for the same day never overwrites the first recorded user agent."""
    make_account("alice", created=now - timedelta(days=1))
    device = make_device("alice", "PHONE", last_seen=now - timedelta(hours=1), user_agent=FIREFOX)
    VisitLedger.materialize(db_session, now - timedelta(hours=2), now, now)
    db_session.commit()

    device.user_agent = "Element/1.6.3 (Android 13)"
    db_session.commit()
    VisitLedger.materialize(db_session, now - timedelta(hours=2), now, now)
    db_session.commit()

    (visit,) = _visits(db_session)
    assert visit.user_agent == FIREFOX


def test_update_daily_visits_advances_watermark(
    db_session: Session, now: datetime, make_account, make_device
) -> None:
    make_account("alice", created=now - timedelta(days=1))
    make_device("alice", "PHONE", last_seen=now - timedelta(minutes=30))
    ledger = VisitLedger(db_session, Watermark(now - timedelta(hours=3)))

    assert ledger.update_daily_visits(now) == 1
    assert ledger.watermark.last_materialized_at == now
    (visit,) = _visits(db_session)
    assert visit.timestamp == as_timestamp(truncate_day(now))


def test_second_run_without_new_activity_writes_nothing(
    db_session: Session, now: datetime, make_account, make_device
) -> None:
    make_account("alice", created=now - timedelta(days=1))
    make_device("alice", "PHONE", last_seen=now - timedelta(minutes=30))
    ledger = VisitLedger(db_session, Watermark(now - timedelta(hours=3)))

    assert ledger.update_daily_visits(now) == 1
    assert ledger.update_daily_visits(now + timedelta(minutes=1)) == 0
    assert _visit_count(db_session) == 1


def test_first_run_after_midnight_dates_visits_to_previous_day(
    db_session: Session, make_account, make_device
) -> None:
    """Activity collected across the day boundary belongs to the day it happened in."""
    last_run = datetime(2026, 10, 17, 23, 30, tzinfo=UTC)
    just_after_midnight = datetime(2026, 10, 18, 0, 5, tzinfo=UTC)
    make_account("alice", created=last_run - timedelta(days=10))
    make_device("alice", "PHONE", last_seen=datetime(2026, 10, 17, 23, 45, tzinfo=UTC))
    ledger = VisitLedger(db_session, Watermark(last_run))

    assert ledger.update_daily_visits(just_after_midnight) == 1

    (visit,) = _visits(db_session)
    assert visit.timestamp == as_timestamp(datetime(2026, 10, 17, tzinfo=UTC))


def test_later_run_on_same_day_dates_visits_to_today(
    db_session: Session, make_account, make_device
) -> None:
    last_run = datetime(2026, 10, 18, 0, 5, tzinfo=UTC)
    later = datetime(2026, 10, 18, 3, 5, tzinfo=UTC)
    make_account("alice", created=last_run - timedelta(days=10))
    make_device("alice", "PHONE", last_seen=datetime(2026, 10, 18, 2, 0, tzinfo=UTC))
    ledger = VisitLedger(db_session, Watermark(last_run))

    ledger.update_daily_visits(later)

    (visit,) = _visits(db_session)
    assert visit.timestamp == as_timestamp(datetime(2026, 10, 18, tzinfo=UTC))


def test_naive_times_are_treated_as_utc(
    db_session: Session, make_account, make_device
) -> None:
    make_account("alice", created=datetime(2026, 10, 1, tzinfo=UTC))
    make_device("alice", "PHONE", last_seen=datetime(2026, 10, 18, 2, 0, tzinfo=UTC))
    ledger = VisitLedger(db_session, Watermark(datetime(2026, 10, 18, 1, 0)))

    assert ledger.update_daily_visits(datetime(2026, 10, 18, 3, 0)) == 1
    assert ledger.watermark.last_materialized_at.tzinfo is not None


def test_failed_run_keeps_watermark(
    mocker, db_session: Session, now: datetime
) -> None:
    """A failing insert raises StoreError and leaves the window to be retried."""
    start = Watermark(now - timedelta(hours=3))
    ledger = VisitLedger(db_session, start)
    mocker.patch.object(
        VisitLedger,
        "materialize",
        side_effect=OperationalError("INSERT INTO user_daily_visits", {}, Exception("locked")),
    )
    rollback = mocker.spy(db_session, "rollback")

    with pytest.raises(StoreError) as excinfo:
        ledger.update_daily_visits(now)

    assert isinstance(excinfo.value.__cause__, OperationalError)
    assert ledger.watermark.last_materialized_at == now - timedelta(hours=3)
    rollback.assert_called_once()


def test_retry_after_failure_covers_missed_window(
    db_session: Session, now: datetime, make_account, make_device
) -> None:
    make_account("alice", created=now - timedelta(days=1))
    make_device("alice", "PHONE", last_seen=now - timedelta(hours=2))
    ledger = VisitLedger(db_session, Watermark(now - timedelta(hours=3)))

    with patch.object(
        VisitLedger,
        "materialize",
        side_effect=OperationalError("INSERT", {}, Exception("gone away")),
    ), pytest.raises(StoreError):
        ledger.update_daily_visits(now - timedelta(hours=1))

    assert ledger.update_daily_visits(now) == 1


def test_failed_rollback_still_raises_store_error(
    mocker, db_session: Session, now: datetime
) -> None:
    """A lost connection that also breaks the rollback surfaces the insert failure."""
    ledger = VisitLedger(db_session, Watermark(now - timedelta(hours=3)))
    mocker.patch.object(
        VisitLedger,
        "materialize",
        side_effect=OperationalError("INSERT INTO user_daily_visits", {}, Exception("gone away")),
    )
    mocker.patch.object(
        db_session,
        "rollback",
        side_effect=OperationalError("ROLLBACK", {}, Exception("gone away")),
    )

    with pytest.raises(StoreError) as excinfo:
        ledger.update_daily_visits(now)

    assert "INSERT INTO user_daily_visits" in str(excinfo.value.__cause__)
    assert ledger.watermark.last_materialized_at == now - timedelta(hours=3)
