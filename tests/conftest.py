# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("VISITS_SCHEDULER_ENABLED", "false")

from usage_stats.db.session import Base
from usage_stats.db.session import get_db as app_get_session
from usage_stats.db.time import as_timestamp, truncate_day
from usage_stats.main import app as fastapi_app
from usage_stats.models import Account, AccountType, DailyVisit, Device

TEST_DB_URL = "sqlite://"

# Midday, so that day truncation moves timestamps by exactly half a day.
FIXED_NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    SessionLocal = sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def now() -> datetime:
    """Reference time shared by a test and the code under test."""
    return FIXED_NOW


@pytest.fixture()
def make_account(db_session: Session) -> Callable[..., Account]:
    """Persist an account registered at ``created``."""

    def _make(
        localpart: str,
        *,
        created: datetime,
        account_type: AccountType = AccountType.USER,
        appservice_id: str | None = None,
    ) -> Account:
        account = Account(
            localpart=localpart,
            created_ts=as_timestamp(created),
            account_type=int(account_type),
            appservice_id=appservice_id,
        )
        db_session.add(account)
        db_session.commit()
        return account

    return _make


@pytest.fixture()
def make_device(db_session: Session) -> Callable[..., Device]:
    """Persist a device with its last activity time."""

    def _make(
        localpart: str,
        device_id: str,
        *,
        last_seen: datetime,
        user_agent: str | None = None,
    ) -> Device:
        device = Device(
            localpart=localpart,
            device_id=device_id,
            last_seen_ts=as_timestamp(last_seen),
            user_agent=user_agent,
        )
        db_session.add(device)
        db_session.commit()
        return device

    return _make


@pytest.fixture()
def make_visit(db_session: Session, now: datetime) -> Callable[..., DailyVisit]:
    """Persist a daily visit ``days_ago`` days before ``now``, truncated to the day."""

    def _make(
        localpart: str,
        days_ago: int,
        *,
        device_id: str = "DEVICE",
        user_agent: str | None = None,
    ) -> DailyVisit:
        visit = DailyVisit(
            localpart=localpart,
            device_id=device_id,
            timestamp=as_timestamp(truncate_day(now - timedelta(days=days_ago))),
            user_agent=user_agent,
        )
        db_session.add(visit)
        db_session.commit()
        return visit

    return _make
