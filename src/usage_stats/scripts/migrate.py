# src/usage_stats/scripts/migrate.py
from __future__ import annotations
import os
from alembic import command
from alembic.config import Config

from usage_stats.core.settings import settings

MIGRATIONS_DIR = os.path.abspath(
    os.path.join(os.path.dirname(__file__), "..", "..", "..", "migrations")
)


def run_upgrade_head() -> None:
    cfg = Config(os.path.join(MIGRATIONS_DIR, "alembic.ini"))
    # Inject sync URL for Alembic
    cfg.set_main_option("sqlalchemy.url", settings.database_url_sync)
    cfg.set_main_option("script_location", MIGRATIONS_DIR)
    command.upgrade(cfg, "head")

if __name__ == "__main__":
    run_upgrade_head()
