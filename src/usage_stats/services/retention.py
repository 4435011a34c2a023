"""Thirty-day retention metrics computed from the daily visit facts.

Two metrics are reported side by side. They disagree on windows, on how a
user is grouped and on which platform heuristic applies, and both
definitions are kept as-is so reported numbers stay comparable over time.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from usage_stats.core.errors import StoreError
from usage_stats.db.time import ONE_DAY, as_timestamp, duration_ms, utcnow
from usage_stats.models import Account, AccountType, DailyVisit
from usage_stats.services.platform import Platform, PlatformVariant, platform_expression

logger = logging.getLogger(__name__)

RETENTION_PERIOD = timedelta(days=30)
LOOKBACK_PERIOD = timedelta(days=60)

ALL_PLATFORMS = "all"
R30_V2_KEYS = (
    Platform.IOS.value,
    Platform.ANDROID.value,
    Platform.WEB.value,
    Platform.ELECTRON.value,
    ALL_PLATFORMS,
)


def _fold_platform_counts(rows: Iterable[tuple[str, int]], result: dict[str, int]) -> dict[str, int]:
    """Add per-platform counts into ``result``.

    Every count goes into ``"all"``; ``unknown`` is not reported on its own.
    """
    for platform, count in rows:
        result[ALL_PLATFORMS] = result.get(ALL_PLATFORMS, 0) + count
        if platform == Platform.UNKNOWN:
            continue
        result[platform] = count
    return result


def r30_users(db: Session, now: datetime | None = None) -> dict[str, int]:
    """Count 30 day retained users, defined as users who:

    - created their account more than 30 days ago,
    - visited at least once in the past 30 days,
    - and whose most recent visit is more than 30 days after account creation.

    Each user is counted once, under the legacy platform of their most recent
    visit. Only platforms that occur appear as keys, besides ``"all"``.
    """
    now = now or utcnow()
    thirty_days_ago = as_timestamp(now - RETENTION_PERIOD)

    recency = func.row_number().over(
        partition_by=DailyVisit.localpart,
        order_by=(DailyVisit.timestamp.desc(), DailyVisit.user_agent.desc()),
    )
    latest_visits = (
        select(
            DailyVisit.localpart,
            DailyVisit.timestamp,
            DailyVisit.user_agent,
            Account.created_ts,
            recency.label("recency"),
        )
        .join(Account, Account.localpart == DailyVisit.localpart)
        .where(
            Account.account_type != int(AccountType.APPSERVICE),
            Account.created_ts < thirty_days_ago,
            DailyVisit.timestamp > thirty_days_ago,
        )
        .subquery()
    )
    retained = (
        select(
            platform_expression(latest_visits.c.user_agent, PlatformVariant.LEGACY).label(
                "platform"
            ),
        )
        .where(
            latest_visits.c.recency == 1,
            latest_visits.c.timestamp - latest_visits.c.created_ts
            > duration_ms(RETENTION_PERIOD),
        )
        .subquery()
    )
    stmt = select(retained.c.platform, func.count()).group_by(retained.c.platform)

    try:
        rows = db.execute(stmt).all()
    except SQLAlchemyError as exc:
        raise StoreError("failed to count R30 users") from exc

    logger.debug("R30 platform rows: %s", rows)
    return _fold_platform_counts(rows, {})


def r30_users_v2(db: Session, now: datetime | None = None) -> dict[str, int]:
    """Count 30 day retained users, defined as users who:

    - appear more than once in the past 60 days,
    - with more than 30 days between their earliest and latest appearance
      in that window.

    Users are grouped per V2 platform, so someone retained on two platforms
    is counted under both. The result always holds ``ios``, ``android``,
    ``web``, ``electron`` and ``all``.
    """
    now = now or utcnow()
    sixty_days_ago = as_timestamp(now - LOOKBACK_PERIOD)
    tomorrow = as_timestamp(now + ONE_DAY)

    client_type = platform_expression(DailyVisit.user_agent, PlatformVariant.V2)
    visits = (
        select(
            DailyVisit.localpart,
            client_type.label("client_type"),
            DailyVisit.timestamp,
        )
        .where(DailyVisit.timestamp > sixty_days_ago, DailyVisit.timestamp < tomorrow)
        .subquery()
    )
    retained = (
        select(visits.c.localpart, visits.c.client_type)
        .group_by(visits.c.localpart, visits.c.client_type)
        .having(
            func.max(visits.c.timestamp) - func.min(visits.c.timestamp)
            > duration_ms(RETENTION_PERIOD)
        )
        .subquery()
    )
    stmt = select(retained.c.client_type, func.count()).group_by(retained.c.client_type)

    try:
        rows = db.execute(stmt).all()
    except SQLAlchemyError as exc:
        raise StoreError("failed to count R30 v2 users") from exc

    logger.debug("R30 v2 platform rows: %s", rows)
    return _fold_platform_counts(rows, dict.fromkeys(R30_V2_KEYS, 0))
