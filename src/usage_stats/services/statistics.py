"""Usage statistics snapshot for the account service.

:func:`user_statistics` gathers every counter reported by the service into a
single :class:`UsageSnapshot`. The individual queries are run one after the
other without a shared transaction, so under concurrent writes the counters
can be slightly inconsistent with each other. That is acceptable for
telemetry.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Select, and_, case, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from usage_stats.core.errors import PartialResultError, StoreError
from usage_stats.db.time import ONE_DAY, as_timestamp, utcnow
from usage_stats.models import Account, AccountType, Device
from usage_stats.schemas.stats import DatabaseEngine, UsageSnapshot
from usage_stats.services.retention import r30_users, r30_users_v2

logger = logging.getLogger(__name__)

MONTH = timedelta(days=30)

ALL_ACCOUNT_TYPES = (
    int(AccountType.USER),
    int(AccountType.GUEST),
    int(AccountType.ADMIN),
    int(AccountType.APPSERVICE),
)
NON_BRIDGED_ACCOUNT_TYPES = (
    int(AccountType.USER),
    int(AccountType.GUEST),
    int(AccountType.ADMIN),
)
NON_GUEST_ACCOUNT_TYPES = (
    int(AccountType.USER),
    int(AccountType.ADMIN),
    int(AccountType.APPSERVICE),
)

_ENGINE_NAMES = {
    "postgresql": "Postgres",
    "sqlite": "SQLite",
}


def _scalar(db: Session, stmt: Select[Any], description: str) -> int:
    try:
        return int(db.execute(stmt).scalar_one() or 0)
    except SQLAlchemyError as exc:
        raise StoreError(f"failed to count {description}") from exc


def count_users_by_type(db: Session, account_types: Sequence[int]) -> int:
    """Count accounts whose type is one of ``account_types``."""
    stmt = select(func.count()).select_from(Account).where(
        Account.account_type.in_(account_types)
    )
    return _scalar(db, stmt, "users by account type")


def count_users_last_seen_after(db: Session, last_seen_after: datetime) -> int:
    """Count distinct users with a device seen after ``last_seen_after``."""
    stmt = select(func.count(func.distinct(Device.localpart))).where(
        Device.last_seen_ts > as_timestamp(last_seen_after)
    )
    return _scalar(db, stmt, "users by last seen")


def all_users(db: Session) -> int:
    """Count every account, bridged ones included."""
    return count_users_by_type(db, ALL_ACCOUNT_TYPES)


def non_bridged_users(db: Session) -> int:
    """Count accounts not created through an application service."""
    return count_users_by_type(db, NON_BRIDGED_ACCOUNT_TYPES)


def daily_users(db: Session, now: datetime) -> int:
    """Count users with a device seen in the past day."""
    return count_users_last_seen_after(db, now - ONE_DAY)


def monthly_users(db: Session, now: datetime) -> int:
    """Count users with a device seen in the past 30 days."""
    return count_users_last_seen_after(db, now - MONTH)


def registered_users_by_type(db: Session, now: datetime) -> dict[str, int]:
    """Break down accounts registered in the past day into native, guest and bridged."""
    user_type = case(
        (
            and_(
                Account.account_type.in_(NON_GUEST_ACCOUNT_TYPES),
                Account.appservice_id.is_(None),
            ),
            "native",
        ),
        (
            and_(
                Account.account_type == int(AccountType.GUEST),
                Account.appservice_id.is_(None),
            ),
            "guest",
        ),
        (
            and_(
                Account.account_type.in_(NON_GUEST_ACCOUNT_TYPES),
                Account.appservice_id.is_not(None),
            ),
            "bridged",
        ),
    )
    registrations = (
        select(user_type.label("user_type"))
        .where(Account.created_ts > as_timestamp(now - ONE_DAY))
        .subquery()
    )
    stmt = select(registrations.c.user_type, func.count()).group_by(registrations.c.user_type)

    try:
        rows = db.execute(stmt).all()
    except SQLAlchemyError as exc:
        raise StoreError("failed to count registered users by type") from exc

    # Guests registered by an application service fit none of the buckets.
    return {kind: count for kind, count in rows if kind is not None}


def _engine_name(db: Session) -> str:
    dialect = db.get_bind().dialect.name
    return _ENGINE_NAMES.get(dialect, dialect)


def database_engine(db: Session) -> DatabaseEngine:
    """Return the product name and server version of the backing database."""
    dialect = db.get_bind().dialect
    engine = DatabaseEngine(engine=_engine_name(db))
    try:
        if dialect.name == "postgresql":
            engine.version = str(db.execute(text("SHOW server_version")).scalar_one())
        elif dialect.name == "sqlite":
            engine.version = str(db.execute(text("SELECT sqlite_version()")).scalar_one())
        elif dialect.server_version_info:
            engine.version = ".".join(str(part) for part in dialect.server_version_info)
    except SQLAlchemyError as exc:
        raise StoreError("failed to query database engine version") from exc
    return engine


def user_statistics(
    db: Session, now: datetime | None = None
) -> tuple[UsageSnapshot, DatabaseEngine]:
    """Collect usage statistics and the database engine version.

    Raises:
        PartialResultError: If any query fails. The exception carries the
            statistics collected up to the failure; later fields keep their
            defaults.
    """
    now = now or utcnow()
    stats = UsageSnapshot()
    database = DatabaseEngine(engine=_engine_name(db))

    steps: tuple[tuple[str, Callable[[], Any]], ...] = (
        ("all_users", lambda: all_users(db)),
        ("daily_users", lambda: daily_users(db, now)),
        ("monthly_users", lambda: monthly_users(db, now)),
        ("r30_users", lambda: r30_users(db, now)),
        ("r30_users_v2", lambda: r30_users_v2(db, now)),
        ("non_bridged_users", lambda: non_bridged_users(db)),
        ("registered_users_by_type", lambda: registered_users_by_type(db, now)),
    )
    for field_name, compute in steps:
        try:
            setattr(stats, field_name, compute())
        except StoreError as exc:
            logger.warning("User statistics stopped at %s: %s", field_name, exc)
            raise PartialResultError(
                f"failed to compute {field_name}", stats=stats, database=database
            ) from exc

    try:
        database.version = database_engine(db).version
    except StoreError as exc:
        logger.warning("User statistics could not read the database version: %s", exc)
        raise PartialResultError(
            "failed to query database engine version", stats=stats, database=database
        ) from exc

    return stats, database
