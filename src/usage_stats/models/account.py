# src/usage_stats/models/account.py
"""Read-only mapping of the account table owned by the account service."""

from __future__ import annotations

import enum

from sqlalchemy import BigInteger, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from usage_stats.db.session import Base


class AccountType(enum.IntEnum):
    """Kinds of account, stored as their integer value."""

    USER = 1
    GUEST = 2
    ADMIN = 3
    APPSERVICE = 4


class Account(Base):
    """A registered account.

    Bridged accounts are those created through an application service, in
    which case ``appservice_id`` names the integration.
    """

    __tablename__ = "account_accounts"

    localpart: Mapped[str] = mapped_column(Text, primary_key=True)
    # Milliseconds since the Unix epoch.
    created_ts: Mapped[int] = mapped_column(BigInteger, nullable=False)
    account_type: Mapped[int] = mapped_column(
        Integer, nullable=False, default=int(AccountType.USER)
    )
    appservice_id: Mapped[str | None] = mapped_column(Text, nullable=True)
