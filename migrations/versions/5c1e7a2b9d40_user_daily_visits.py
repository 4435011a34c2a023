"""user daily visits

Revision ID: 5c1e7a2b9d40
Revises:
Create Date: 2026-10-18 09:12:44.318202

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1e7a2b9d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the daily visit facts table and its lookup indexes."""
    op.create_table(
        "user_daily_visits",
        sa.Column("localpart", sa.Text(), nullable=False),
        sa.Column("device_id", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=True),
        # One row per device per day.
        sa.PrimaryKeyConstraint("localpart", "device_id", "timestamp"),
    )
    op.create_index("timestamp_idx", "user_daily_visits", ["timestamp"])
    op.create_index("localpart_timestamp_idx", "user_daily_visits", ["localpart", "timestamp"])


def downgrade() -> None:
    """Drop the daily visit facts table."""
    op.drop_index("localpart_timestamp_idx", table_name="user_daily_visits")
    op.drop_index("timestamp_idx", table_name="user_daily_visits")
    op.drop_table("user_daily_visits")
