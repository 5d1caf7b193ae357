"""Deposit commitment generation with on-chain collision checks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from pool_wallet.errors.wallet_errors import WalletError
from pool_wallet.notes.derivation import NoteDeriver, field_to_hex

if TYPE_CHECKING:
    from pool_wallet.indexer.models import Activity
    from pool_wallet.notes.derivation import FieldHasher
    from pool_wallet.store.account_store import EncryptedAccountStore
    from pool_wallet.store.session import Session

logger = logging.getLogger(__name__)


class DepositLookup(Protocol):
    """Finds an existing on-chain deposit by precommitment."""

    async def get_deposit_by_precommitment(
        self, pool_id: str, precommitment: int
    ) -> Activity | None: ...


@dataclass(frozen=True)
class DepositCommitment:
    """Public values for a new deposit at ``deposit_index``."""

    pool_address: str
    deposit_index: int
    precommitment: int
    nullifier_hash: int
    change_index: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "poolAddress": self.pool_address,
            "depositIndex": self.deposit_index,
            "changeIndex": self.change_index,
            "precommitment": field_to_hex(self.precommitment),
            "nullifierHash": field_to_hex(self.nullifier_hash),
        }


class DepositService:
    """Chooses the next unused deposit index for an account.

    A candidate index is skipped when its precommitment is already on
    chain (for example a deposit made from another device that local
    discovery has not seen yet).
    """

    def __init__(
        self,
        store: EncryptedAccountStore,
        lookup: DepositLookup,
        *,
        max_collision_attempts: int = 5,
        hasher: FieldHasher | None = None,
    ) -> None:
        self._store = store
        self._lookup = lookup
        self._max_attempts = max_collision_attempts
        self._hasher = hasher

    async def generate_deposit_commitment(
        self,
        session: Session,
        public_key: str,
        account_key: int,
        pool_address: str,
    ) -> DepositCommitment:
        """Reserve the next deposit index and return its commitment values.

        Args:
            session: Open store session of the account.
            public_key: Account public key.
            account_key: Account key scalar the notes are derived from.
            pool_address: Pool to deposit into.

        Returns:
            DepositCommitment for the reserved index.

        Raises:
            WalletError: ``DEPOSIT_COLLISION`` if every candidate index
                within ``max_collision_attempts`` is already used on chain.
            IndexerError: If the collision lookup fails.
        """
        deriver = NoteDeriver(account_key, hasher=self._hasher)

        for _ in range(self._max_attempts):
            candidate = await self._store.reserve_deposit_index(session, public_key, pool_address)
            precommitment = deriver.precommitment(pool_address, candidate)
            try:
                existing = await self._lookup.get_deposit_by_precommitment(
                    pool_address, precommitment
                )
            except Exception:
                await self._store.release_deposit_index(
                    session, public_key, pool_address, candidate
                )
                raise
            if existing is None:
                logger.info(
                    "Reserved deposit index %d for %r", candidate, session.account_name
                )
                return DepositCommitment(
                    pool_address=pool_address,
                    deposit_index=candidate,
                    precommitment=precommitment,
                    nullifier_hash=deriver.nullifier_hash(pool_address, candidate, 0),
                )
            # already on chain, so it stays reserved for discovery
            logger.warning(
                "Deposit collision at index %d (tx %s), retrying",
                candidate,
                existing.transaction_hash,
            )

        msg = f"no unused deposit index after {self._max_attempts} attempts"
        raise WalletError(msg, code="DEPOSIT_COLLISION", status_code=409)
