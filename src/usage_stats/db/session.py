"""Engine and session factory for the statistics database."""

from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from usage_stats.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base for the account, device and daily visit mappings."""


# Alembic autogenerate compares against Base.metadata, so the models must be loaded.
import usage_stats.models  # noqa: E402,F401


def _connect_args(url: str) -> dict[str, object]:
    # Pooled SQLite connections are handed to the scheduler's worker threads.
    if make_url(url).get_backend_name() == "sqlite":
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.effective_database_url,
    connect_args=_connect_args(settings.effective_database_url),
    pool_pre_ping=True,
    echo=settings.sql_debug,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a session for a single request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
