"""Shared test fixtures for the pool-wallet test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from pool_wallet.config.settings import DatabaseEngine

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

HARDHAT_MNEMONIC = "test test test test test test test test test test test junk"
HARDHAT_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
HARDHAT_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"

POOL = "0xB68E4f712bd0783fbc6b369409885c2319Db114a"
RECIPIENT = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
PROCESSOOOR = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
ETHER = 10**18


# ---------------------------------------------------------------------------
# Configuration & infrastructure
# ---------------------------------------------------------------------------


@pytest.fixture
def app_config():
    """Provide a test AppConfig with an in-memory database and a cheap KDF."""
    from pool_wallet.config.settings import (
        AppConfig,
        DatabaseConfig,
        IndexerConfig,
        KDFConfig,
        PoolConfig,
        WithdrawalConfig,
    )

    return AppConfig(
        debug=True,
        db=DatabaseConfig(
            engine=DatabaseEngine.SQLITE,
            dsn="sqlite+aiosqlite:///:memory:",
        ),
        indexer=IndexerConfig(url="https://indexer.test", page_size=2, request_interval=0),
        pool=PoolConfig(address=POOL, chain_id=84532, scope="12345"),
        kdf=KDFConfig(time_cost=1, memory_cost=8, parallelism=1),
        withdrawal=WithdrawalConfig(
            relay_fee_bps=1000,
            max_execution_fee="0.01",
            processooor=PROCESSOOOR,
            prover_url="https://prover.test",
            relay_url="https://relay.test",
        ),
    )


@pytest.fixture
async def datastore(app_config) -> AsyncIterator:
    """Open datastore with all wallet tables created."""
    from pool_wallet.datastore.client import Datastore

    ds = Datastore(app_config.db)
    await ds.open()
    yield ds
    await ds.close()


@pytest.fixture
def kdf(app_config, datastore):
    """Key derivation service backed by the test datastore."""
    from pool_wallet.auth.kdf import KeyDerivationService
    from pool_wallet.store.session_info_repository import SessionInfoStore

    return KeyDerivationService(
        app_config.kdf,
        session_config=app_config.session,
        session_repo=SessionInfoStore(datastore),
    )


@pytest.fixture
def hardhat_keys():
    """Account keys of the well-known development mnemonic."""
    from pool_wallet.keys.account import derive_account_keys

    return derive_account_keys(HARDHAT_MNEMONIC)


@pytest.fixture
def event_source():
    return FakeEventSource()


@pytest.fixture
def store(datastore, event_source):
    from pool_wallet.store.account_store import EncryptedAccountStore

    return EncryptedAccountStore(datastore, event_source=event_source)


@pytest.fixture
async def open_session(kdf, store, hardhat_keys):
    """A password account named ``alice`` holding the development keys."""
    from pool_wallet.auth.credentials import PasswordAuth
    from pool_wallet.store.data import AccountData

    key = await kdf.derive_symmetric_key_from_password("correct horse", "alice")
    session = await store.initialize_session(key, "alice", PasswordAuth())
    await store.store_account_data(session, AccountData(account_name="alice", keys=hardhat_keys))
    yield session
    session.close()


@pytest.fixture
def deriver(hardhat_keys):
    from pool_wallet.notes.derivation import NoteDeriver

    return NoteDeriver(hardhat_keys.account_key)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeEventSource:
    """In-memory event log with positional cursors (``"c<index>"``)."""

    def __init__(self, activities: list | None = None) -> None:
        self.activities: list = list(activities or [])
        self.calls: list[str | None] = []
        self.fail_on_call: int | None = None
        self.latest_cursor_error: Exception | None = None

    def add(self, *activities: Any) -> None:
        self.activities.extend(activities)

    async def get_activities(
        self,
        pool_id: str,
        *,
        limit: int | None = None,
        after: str | None = None,
        order_direction: str = "asc",
    ):
        from pool_wallet.errors.chain_errors import IndexerError
        from pool_wallet.indexer.models import ActivityPage

        self.calls.append(after)
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            msg = "indexer unavailable"
            raise IndexerError(msg, status_code=503)

        start = int(after[1:]) + 1 if after else 0
        limit = limit or 100
        chunk = self.activities[start : start + limit]
        if not chunk:
            return ActivityPage(items=[], has_next_page=False, end_cursor=None)
        end = start + len(chunk) - 1
        return ActivityPage(
            items=chunk,
            has_next_page=end + 1 < len(self.activities),
            start_cursor=f"c{start}",
            end_cursor=f"c{end}",
        )

    async def get_latest_cursor(self, pool_id: str) -> str | None:
        if self.latest_cursor_error is not None:
            raise self.latest_cursor_error
        if not self.activities:
            return None
        return f"c{len(self.activities) - 1}"

    async def get_deposit_by_precommitment(self, pool_id: str, precommitment: int):
        for activity in self.activities:
            if activity.is_deposit and activity.precommitment_hash == precommitment:
                return activity
        return None


class FakePlatform:
    """Hardware credential platform answering with a fixed PRF secret."""

    def __init__(
        self,
        *,
        available: bool = True,
        prf_enabled: bool = True,
        secret: bytes = b"\x42" * 32,
        error: Exception | None = None,
    ) -> None:
        self.available = available
        self.prf_enabled = prf_enabled
        self.secret = secret
        self.error = error
        self.credentials: dict[str, str] = {}

    def is_available(self) -> bool:
        return self.available

    async def create_credential(self, *, account_name: str, user_handle: bytes, prf_input: bytes):
        from pool_wallet.auth.credentials import CredentialRegistration

        if self.error is not None:
            raise self.error
        credential_id = f"cred-{len(self.credentials) + 1}"
        self.credentials[credential_id] = account_name
        return CredentialRegistration(credential_id=credential_id, prf_enabled=self.prf_enabled)

    async def get_prf_output(self, *, credential_id: str, prf_input: bytes) -> bytes | None:
        import hashlib
        import hmac

        if self.error is not None:
            raise self.error
        if credential_id not in self.credentials:
            msg = "unknown credential"
            raise LookupError(msg)
        return hmac.new(self.secret, prf_input, hashlib.sha256).digest()


class FakeProver:
    """Prover returning a canned proof, optionally failing the first calls."""

    def __init__(self, *, failures: int = 0) -> None:
        self.failures = failures
        self.witnesses: list[dict[str, Any]] = []

    async def generate_proof(self, witness: dict[str, Any]):
        from pool_wallet.errors.wallet_errors import ProverError
        from pool_wallet.withdrawal.models import ProofResponse

        self.witnesses.append(witness)
        if self.failures > 0:
            self.failures -= 1
            msg = "proving key not loaded"
            raise ProverError(msg)
        return ProofResponse(
            pi_a=("1", "2", "1"),
            pi_b=(("3", "4"), ("5", "6"), ("1", "0")),
            pi_c=("7", "8", "1"),
            public_signals=("9", "10"),
        )


class FakeRelayer:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.error = error
        self.submitted: list = []

    async def submit(self, envelope) -> str:
        if self.error is not None:
            raise self.error
        self.submitted.append(envelope)
        return "0x" + "ab" * 32


class FakePoolState:
    def __init__(self, *, asp_root: int | None = 777) -> None:
        self.asp_root = asp_root

    async def get_state_tree_leaves(self, pool_id: str):
        from pool_wallet.indexer.models import StateTreeLeaf

        return [StateTreeLeaf(leaf_index=0, leaf_value=111), StateTreeLeaf(1, 222)]

    async def get_latest_asp_root(self):
        from pool_wallet.indexer.models import AspRoot

        if self.asp_root is None:
            return None
        return AspRoot(root=self.asp_root, ipfs_cid="bafy-test")


@pytest.fixture
def fakes():
    """Access to the fake collaborator classes from test modules."""
    return {
        "event_source": FakeEventSource,
        "platform": FakePlatform,
        "prover": FakeProver,
        "relayer": FakeRelayer,
        "pool_state": FakePoolState,
    }


@pytest.fixture
def activity():
    """Factory for indexer activities."""
    from pool_wallet.indexer.models import Activity, ActivityType

    counter = {"n": 0}

    def _make(kind: str, **fields: Any) -> Activity:
        counter["n"] += 1
        n = counter["n"]
        fields.setdefault("block_number", 100 + n)
        fields.setdefault("timestamp", 1_700_000_000 + n)
        fields.setdefault("transaction_hash", f"0x{n:064x}")
        fields.setdefault("pool_id", POOL.lower())
        return Activity(id=f"a{n}", type=ActivityType(kind), **fields)

    return _make
