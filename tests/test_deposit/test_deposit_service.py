"""Tests for deposit commitment generation and collision handling."""

from __future__ import annotations

import asyncio

import pytest

from pool_wallet.deposit.service import DepositCommitment, DepositService
from pool_wallet.errors.chain_errors import IndexerError
from pool_wallet.errors.wallet_errors import WalletError

POOL = "0xB68E4f712bd0783fbc6b369409885c2319Db114a"
ETHER = 10**18


def _service(store, lookup, **kwargs) -> DepositService:
    return DepositService(store, lookup, **kwargs)


class TestDepositService:
    async def test_first_deposit(self, store, open_session, hardhat_keys, event_source, deriver):
        deposit = await _service(store, event_source).generate_deposit_commitment(
            open_session, hardhat_keys.public_key, hardhat_keys.account_key, POOL
        )
        assert deposit.deposit_index == 0
        assert deposit.change_index == 0
        assert deposit.precommitment == deriver.precommitment(POOL, 0)
        assert deposit.nullifier_hash == deriver.nullifier_hash(POOL, 0, 0)

    async def test_indices_advance(self, store, open_session, hardhat_keys, event_source):
        service = _service(store, event_source)
        pk, key = hardhat_keys.public_key, hardhat_keys.account_key
        first = await service.generate_deposit_commitment(open_session, pk, key, POOL)
        second = await service.generate_deposit_commitment(open_session, pk, key, POOL)
        assert (first.deposit_index, second.deposit_index) == (0, 1)
        assert first.precommitment != second.precommitment
        assert await store.get_next_deposit_index(open_session, pk, POOL) == 2

    async def test_collision_skips_used_index(
        self, store, open_session, hardhat_keys, event_source, activity, deriver
    ) -> None:
        event_source.add(
            activity("DEPOSIT", amount=ETHER, precommitment_hash=deriver.precommitment(POOL, 0))
        )
        deposit = await _service(store, event_source).generate_deposit_commitment(
            open_session, hardhat_keys.public_key, hardhat_keys.account_key, POOL
        )
        assert deposit.deposit_index == 1

    async def test_collision_limit(
        self, store, open_session, hardhat_keys, event_source, activity, deriver
    ) -> None:
        event_source.add(
            *(
                activity("DEPOSIT", amount=ETHER, precommitment_hash=deriver.precommitment(POOL, i))
                for i in range(3)
            )
        )
        service = _service(store, event_source, max_collision_attempts=3)
        with pytest.raises(WalletError) as exc_info:
            await service.generate_deposit_commitment(
                open_session, hardhat_keys.public_key, hardhat_keys.account_key, POOL
            )
        assert exc_info.value.code == "DEPOSIT_COLLISION"
        assert exc_info.value.status_code == 409
        # indices already on chain stay reserved
        assert await store.get_next_deposit_index(open_session, hardhat_keys.public_key, POOL) == 3

    async def test_lookup_failure_propagates(self, store, open_session, hardhat_keys):
        class DownLookup:
            async def get_deposit_by_precommitment(self, pool_id, precommitment):
                msg = "indexer down"
                raise IndexerError(msg)

        with pytest.raises(IndexerError):
            await _service(store, DownLookup()).generate_deposit_commitment(
                open_session, hardhat_keys.public_key, hardhat_keys.account_key, POOL
            )
        assert await store.get_next_deposit_index(open_session, hardhat_keys.public_key, POOL) == 0

    async def test_concurrent_requests_get_distinct_indices(
        self, store, open_session, hardhat_keys, event_source
    ) -> None:
        service = _service(store, event_source)
        pk, key = hardhat_keys.public_key, hardhat_keys.account_key
        deposits = await asyncio.gather(
            *(service.generate_deposit_commitment(open_session, pk, key, POOL) for _ in range(3))
        )
        assert sorted(d.deposit_index for d in deposits) == [0, 1, 2]
        assert await store.get_next_deposit_index(open_session, pk, POOL) == 3


class TestDepositCommitment:
    def test_to_dict(self) -> None:
        deposit = DepositCommitment(
            pool_address=POOL, deposit_index=3, precommitment=255, nullifier_hash=1
        )
        data = deposit.to_dict()
        assert data["depositIndex"] == 3
        assert data["changeIndex"] == 0
        assert data["precommitment"] == "0x" + "00" * 31 + "ff"
        assert data["nullifierHash"].endswith("01")
        assert len(data["nullifierHash"]) == 66
