"""Datastore-backed persistence for the last-used session hint."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import delete

from pool_wallet.auth.credentials import AuthMethodKind
from pool_wallet.auth.session_info import SessionInfo
from pool_wallet.models.session_info import CURRENT_SESSION_ID, SessionInfoRecord

if TYPE_CHECKING:
    from pool_wallet.datastore.client import Datastore


class SessionInfoStore:
    """Single-row repository implementing ``SessionInfoRepository``."""

    def __init__(self, datastore: Datastore) -> None:
        self._ds = datastore

    async def save(self, info: SessionInfo) -> None:
        """Replace the stored hint."""
        async with self._ds.session() as session:
            row = await session.get(SessionInfoRecord, CURRENT_SESSION_ID)
            if row is None:
                row = SessionInfoRecord(id=CURRENT_SESSION_ID)
                session.add(row)
            row.account_name = info.account_name
            row.auth_method = info.auth_method.value
            row.credential_id = info.credential_id
            row.environment = info.environment
            row.last_auth_time = info.last_auth_time
            await session.commit()

    async def load(self) -> SessionInfo | None:
        """Return the stored hint, if any."""
        async with self._ds.session() as session:
            row = await session.get(SessionInfoRecord, CURRENT_SESSION_ID)
            if row is None:
                return None
            return SessionInfo(
                account_name=row.account_name,
                auth_method=AuthMethodKind(row.auth_method),
                last_auth_time=row.last_auth_time,
                environment=row.environment,
                credential_id=row.credential_id,
            )

    async def clear(self) -> None:
        """Delete the stored hint."""
        async with self._ds.session() as session:
            await session.execute(delete(SessionInfoRecord))
            await session.commit()
