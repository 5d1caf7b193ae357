"""Last-used authentication hint (single row)."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[datetime]

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from pool_wallet.models.base import Base

CURRENT_SESSION_ID = "current"


class SessionInfoRecord(Base):
    """Persisted ``SessionInfo``; never holds key material."""

    __tablename__ = "session_info"

    id: Mapped[str] = mapped_column(String(16), primary_key=True, default=CURRENT_SESSION_ID)
    account_name: Mapped[str] = mapped_column(String(64), nullable=False)
    auth_method: Mapped[str] = mapped_column(String(16), nullable=False)
    credential_id: Mapped[str | None] = mapped_column(String(512), nullable=True, default=None)
    environment: Mapped[str] = mapped_column(String(64), nullable=False, default="default")
    last_auth_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
