"""Wallet ORM models.

Import :data:`ALL_MODELS` for migration and table creation.
"""

from pool_wallet.models.account import AccountRecord
from pool_wallet.models.base import Base, TimestampMixin
from pool_wallet.models.session_info import SessionInfoRecord

ALL_MODELS: list[type[Base]] = [
    AccountRecord,
    SessionInfoRecord,
]

__all__ = [
    "ALL_MODELS",
    "AccountRecord",
    "Base",
    "SessionInfoRecord",
    "TimestampMixin",
]
