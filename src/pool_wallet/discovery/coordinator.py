"""One discovery scan per account and pool at a time."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from pool_wallet.auth.kdf import normalize_account_name
from pool_wallet.discovery.cancellation import CancellationToken
from pool_wallet.discovery.progress import DiscoveryProgress, DiscoveryResult

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from pool_wallet.discovery.engine import NoteDiscoveryEngine
    from pool_wallet.store.session import Session

logger = logging.getLogger(__name__)


class DiscoveryCoordinator:
    """Serializes discovery runs per ``(account, pool)``.

    A new request cancels the in-flight run's token and waits for it to
    release the account's lock before starting, so two scans never write
    the same note cache concurrently.
    """

    def __init__(self, engine: NoteDiscoveryEngine) -> None:
        self._engine = engine
        self._locks: defaultdict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)
        self._tokens: dict[tuple[str, str], CancellationToken] = {}

    @staticmethod
    def _key(account_name: str, pool_address: str) -> tuple[str, str]:
        return (normalize_account_name(account_name), pool_address.lower())

    def is_running(self, account_name: str, pool_address: str) -> bool:
        return self._locks[self._key(account_name, pool_address)].locked()

    def cancel(self, account_name: str, pool_address: str) -> bool:
        """Cancel the current run for an account, if any."""
        token = self._tokens.get(self._key(account_name, pool_address))
        if token is None:
            return False
        token.cancel("cancelled by caller")
        return True

    async def discover(
        self,
        session: Session,
        public_key: str,
        account_key: int,
        pool_address: str,
    ) -> AsyncIterator[DiscoveryProgress]:
        """Start a scan, superseding any scan already running for the account."""
        key = self._key(session.account_name, pool_address)
        previous = self._tokens.get(key)
        if previous is not None:
            previous.cancel("superseded by a new discovery request")
        token = CancellationToken()
        self._tokens[key] = token

        async with self._locks[key]:
            try:
                async for progress in self._engine.discover(
                    session, public_key, account_key, pool_address, cancel_token=token
                ):
                    yield progress
            finally:
                if self._tokens.get(key) is token:
                    del self._tokens[key]

    async def run(
        self,
        session: Session,
        public_key: str,
        account_key: int,
        pool_address: str,
    ) -> DiscoveryResult:
        """Run :meth:`discover` to the end and return the account's chains."""
        last = DiscoveryProgress()
        async for progress in self.discover(session, public_key, account_key, pool_address):
            last = progress
        chains = await self._engine.get_chains(session, public_key, pool_address)
        return DiscoveryResult(progress=last, chains=chains)
