"""Explicit account store session (Closed -> Open -> Closed)."""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from typing import TYPE_CHECKING

from pool_wallet.errors.definitions import ErrSessionNotInitialized

if TYPE_CHECKING:
    from pool_wallet.auth.credentials import AuthMethod
    from pool_wallet.auth.kdf import SymmetricSessionKey

logger = logging.getLogger(__name__)


class SessionState(enum.StrEnum):
    OPEN = "open"
    CLOSED = "closed"


class Session:
    """Handle to one unlocked account.

    Created by :meth:`EncryptedAccountStore.initialize_session` and passed
    to every store operation that touches encrypted data. Closing it wipes
    the symmetric key; any later use fails with ``SESSION_NOT_INITIALIZED``.
    """

    def __init__(self, key: SymmetricSessionKey, account_name: str, method: AuthMethod) -> None:
        self.id = uuid.uuid4().hex
        self.account_name = account_name
        self.method = method
        self._key: SymmetricSessionKey | None = key
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"Session(id={self.id[:8]}, account={self.account_name!r}, state={self.state.value})"

    @property
    def state(self) -> SessionState:
        if self._key is None or self._key.is_destroyed:
            return SessionState.CLOSED
        return SessionState.OPEN

    @property
    def is_open(self) -> bool:
        return self.state == SessionState.OPEN

    @property
    def lock(self) -> asyncio.Lock:
        """Serializes read-modify-write cycles on this account's blob."""
        return self._lock

    def key_material(self) -> bytes:
        """Return the raw key, failing if the session is closed."""
        if self._key is None or self._key.is_destroyed:
            raise ErrSessionNotInitialized
        return self._key.material

    def close(self) -> None:
        """Destroy the key and move to Closed (idempotent)."""
        if self._key is not None:
            self._key.destroy()
            self._key = None
            logger.info("Closed store session for account %r", self.account_name)
