"""WalletEngine — central engine client owning all wallet services."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pool_wallet.auth.credentials import (
    AuthMethodKind,
    CredentialRecord,
    HardwareAuth,
    PasswordAuth,
)
from pool_wallet.auth.kdf import normalize_account_name, validate_account_name
from pool_wallet.auth.session_info import SessionInfo
from pool_wallet.errors.definitions import ErrCredentialAlreadyExists
from pool_wallet.errors.wallet_errors import CredentialError
from pool_wallet.keys.account import derive_account_keys
from pool_wallet.store.data import AccountData
from pool_wallet.withdrawal.models import WithdrawalRequest

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from decimal import Decimal

    from pool_wallet.auth.credentials import AuthMethod, CredentialPlatform
    from pool_wallet.auth.kdf import KeyDerivationService, SymmetricSessionKey
    from pool_wallet.config.settings import AppConfig
    from pool_wallet.datastore.client import Datastore
    from pool_wallet.deposit.service import DepositCommitment, DepositService
    from pool_wallet.discovery.coordinator import DiscoveryCoordinator
    from pool_wallet.discovery.progress import DiscoveryProgress, DiscoveryResult
    from pool_wallet.indexer.service import IndexerService
    from pool_wallet.metrics.collector import EngineMetrics
    from pool_wallet.notes.derivation import FieldHasher
    from pool_wallet.notes.models import Note
    from pool_wallet.store.account_store import EncryptedAccountStore
    from pool_wallet.store.session import Session
    from pool_wallet.withdrawal.models import PreparedWithdrawal
    from pool_wallet.withdrawal.preparer import WithdrawalPreparer
    from pool_wallet.withdrawal.prover import ProverService, RelayService

logger = logging.getLogger(__name__)

# Error messages
_ERR_NOT_INITIALIZED = "Engine not initialized. Call initialize() first."


@dataclass
class UnlockedAccount:
    """An open store session together with the decrypted account data."""

    session: Session
    data: AccountData

    @property
    def account_name(self) -> str:
        return self.data.account_name

    @property
    def public_key(self) -> str:
        return self.data.public_key

    @property
    def account_key(self) -> int:
        return self.data.keys.account_key

    @property
    def is_open(self) -> bool:
        return self.session.is_open


class WalletEngine:
    """Central engine that owns all services and infrastructure.

    Collaborators that talk to the outside world (indexer, prover, relayer,
    hardware credential platform) may be injected; anything not injected is
    built from the configuration and owned by the engine.

    Usage::

        engine = WalletEngine(config)
        await engine.initialize()
        try:
            account = await engine.create_account("alice", password="hunter22")
            result = await engine.sync_notes(account)
        finally:
            await engine.close()
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        platform: CredentialPlatform | None = None,
        indexer: IndexerService | None = None,
        prover: ProverService | None = None,
        relayer: RelayService | None = None,
        hasher: FieldHasher | None = None,
        metrics: EngineMetrics | None = None,
    ) -> None:
        """Initialize engine with configuration.

        Args:
            config: Application configuration.
            platform: Hardware credential platform, if the host has one.
            indexer: Event source / pool state client to use instead of
                building an :class:`IndexerService`.
            prover: Proving client to use instead of :class:`ProverService`.
            relayer: Relay client to use instead of :class:`RelayService`.
            hasher: Field hasher for note derivation.
            metrics: Metrics sink; a private registry is used when omitted.
        """
        self._config = config
        self._platform = platform
        self._hasher = hasher
        self._metrics = metrics
        self._initialized = False

        self._indexer = indexer
        self._prover = prover
        self._relayer = relayer
        self._owned: list[IndexerService | ProverService | RelayService] = []

        # Infrastructure components
        self._datastore: Datastore | None = None

        # Services
        self._kdf: KeyDerivationService | None = None
        self._store: EncryptedAccountStore | None = None
        self._discovery: DiscoveryCoordinator | None = None
        self._deposits: DepositService | None = None
        self._withdrawals: WithdrawalPreparer | None = None

    async def initialize(self) -> None:
        """Open the datastore, create tables and start services.

        Raises:
            RuntimeError: If already initialized.
        """
        if self._initialized:
            msg = "Engine already initialized"
            raise RuntimeError(msg)

        # Import here to avoid circular deps
        from pool_wallet.auth.kdf import KeyDerivationService
        from pool_wallet.datastore.client import Datastore
        from pool_wallet.deposit.service import DepositService
        from pool_wallet.discovery.coordinator import DiscoveryCoordinator
        from pool_wallet.discovery.engine import NoteDiscoveryEngine
        from pool_wallet.indexer.service import IndexerService
        from pool_wallet.metrics.collector import EngineMetrics
        from pool_wallet.store.account_store import EncryptedAccountStore
        from pool_wallet.store.session_info_repository import SessionInfoStore
        from pool_wallet.withdrawal.preparer import WithdrawalPreparer
        from pool_wallet.withdrawal.prover import ProverService, RelayService

        if self._metrics is None:
            self._metrics = EngineMetrics()

        # Initialize datastore
        self._datastore = Datastore(self._config.db)
        await self._datastore.open()

        # External collaborators
        if self._indexer is None:
            self._indexer = IndexerService(self._config.indexer)
            self._owned.append(self._indexer)
        if self._prover is None:
            self._prover = ProverService(self._config.withdrawal)
            self._owned.append(self._prover)
        if self._relayer is None:
            self._relayer = RelayService(self._config.withdrawal)
            self._owned.append(self._relayer)
        for service in self._owned:
            await service.connect()

        # Initialize services
        self._kdf = KeyDerivationService(
            self._config.kdf,
            session_config=self._config.session,
            platform=self._platform,
            session_repo=SessionInfoStore(self._datastore),
            metrics=self._metrics,
        )
        self._store = EncryptedAccountStore(self._datastore, event_source=self._indexer)
        self._discovery = DiscoveryCoordinator(
            NoteDiscoveryEngine(
                self._store,
                self._indexer,
                page_size=self._config.indexer.page_size,
                hasher=self._hasher,
                metrics=self._metrics,
            )
        )
        self._deposits = DepositService(
            self._store,
            self._indexer,
            max_collision_attempts=self._config.deposit.max_collision_attempts,
            hasher=self._hasher,
        )
        self._withdrawals = WithdrawalPreparer(
            self._store,
            self._indexer,
            self._prover,
            self._relayer,
            withdrawal_config=self._config.withdrawal,
            pool_config=self._config.pool,
            hasher=self._hasher,
            metrics=self._metrics,
        )

        self._initialized = True
        logger.info("Wallet engine initialized (pool %s)", self._config.pool.address)

    async def close(self) -> None:
        """Gracefully shut down all services and connections.

        Can be called multiple times (idempotent).
        """
        if not self._initialized:
            return

        self._withdrawals = None
        self._deposits = None
        self._discovery = None
        self._store = None
        self._kdf = None

        for service in reversed(self._owned):
            await service.close()
        self._owned.clear()

        if self._datastore is not None:
            await self._datastore.close()
            self._datastore = None

        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        """Check if the engine is initialized."""
        return self._initialized

    @property
    def config(self) -> AppConfig:
        """Get the application configuration."""
        return self._config

    @property
    def metrics(self) -> EngineMetrics:
        """Get the engine metrics."""
        if self._metrics is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._metrics

    @property
    def datastore(self) -> Datastore:
        """Get the datastore instance."""
        if self._datastore is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._datastore

    @property
    def kdf(self) -> KeyDerivationService:
        """Get the key derivation service."""
        if self._kdf is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._kdf

    @property
    def store(self) -> EncryptedAccountStore:
        """Get the encrypted account store."""
        if self._store is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._store

    @property
    def discovery(self) -> DiscoveryCoordinator:
        """Get the discovery coordinator."""
        if self._discovery is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._discovery

    @property
    def deposits(self) -> DepositService:
        """Get the deposit service."""
        if self._deposits is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._deposits

    @property
    def withdrawals(self) -> WithdrawalPreparer:
        """Get the withdrawal preparer."""
        if self._withdrawals is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._withdrawals

    @property
    def pool_address(self) -> str:
        return self._config.pool.address

    async def health_check(self) -> dict[str, str]:
        """Check health status of all engine components.

        Returns:
            Dictionary with component statuses ('ok', 'error', 'unknown',
            'not_initialized'). The indexer stays 'unknown' when the injected
            event source has no health check.
        """
        status = {
            "engine": "ok" if self._initialized else "not_initialized",
            "datastore": "unknown",
            "indexer": "unknown",
            "hardware": "unknown",
        }

        if self._initialized:
            reachable = self._datastore is not None and await self._datastore.ping()
            status["datastore"] = "ok" if reachable else "error"

            # injected event sources need not expose a health check
            check = getattr(self._indexer, "health_check", None)
            if check is not None:
                status["indexer"] = "ok" if await check() else "error"

            status["hardware"] = "ok" if self.kdf.hardware_available else "unavailable"

        return status

    # ------------------------------------------------------------------
    # Account lifecycle
    # ------------------------------------------------------------------

    async def create_account(
        self,
        account_name: str,
        *,
        password: str | None = None,
        use_hardware: bool = False,
        user_handle: bytes | None = None,
        phrase: str | None = None,
    ) -> UnlockedAccount:
        """Create (or restore, when *phrase* is given) a local account.

        New accounts record a sync baseline so discovery skips history
        they cannot own; restored accounts scan the pool from the start.

        Raises:
            ValidationError: Bad account name or recovery phrase.
            CredentialError: Name already taken, hardware unsupported,
                cancelled, or no password for a password account.
        """
        validate_account_name(account_name)
        name = account_name.strip()
        if await self.store.account_exists(name):
            raise ErrCredentialAlreadyExists

        keys = derive_account_keys(phrase)

        method: AuthMethod
        if use_hardware:
            credential_id = await self.kdf.create_hardware_credential(
                name, user_handle or normalize_account_name(name).encode("utf-8")
            )
            method = HardwareAuth(credential_id=credential_id)
            key = await self.kdf.derive_symmetric_key_from_hardware_credential(
                name, credential_id
            )
            await self.store.store_passkey_data(
                CredentialRecord(
                    account_name=name,
                    method=AuthMethodKind.HARDWARE,
                    created_at=datetime.now(UTC),
                    credential_id=credential_id,
                )
            )
        else:
            if not password:
                msg = "password required for a password-protected account"
                raise CredentialError(msg, code="PASSWORD_REQUIRED")
            user_salt = secrets.token_bytes(self._config.kdf.user_salt_bytes)
            method = PasswordAuth(user_salt_hex=user_salt.hex())
            key = await self.kdf.derive_symmetric_key_from_password(
                password, name, user_salt=user_salt
            )

        session = await self.store.initialize_session(key, name, method)
        data = AccountData(account_name=name, keys=keys)
        try:
            await self.store.store_account_data(session, data)
        except Exception:
            session.close()
            await self.store.delete_account(name)
            raise

        if phrase is None:
            await self.store.initialize_sync_baseline(session, keys.public_key, self.pool_address)

        await self._remember(name, method)
        logger.info("Created account %r (%s)", name, method.kind.value)
        return UnlockedAccount(session=session, data=data)

    async def restore_account(
        self,
        account_name: str,
        phrase: str,
        *,
        password: str | None = None,
        use_hardware: bool = False,
    ) -> UnlockedAccount:
        """Re-create an account from its recovery phrase under a new credential."""
        return await self.create_account(
            account_name, password=password, use_hardware=use_hardware, phrase=phrase
        )

    async def unlock_with_password(self, account_name: str, password: str) -> UnlockedAccount:
        """Open a password-protected account.

        Raises:
            SessionError: ``ACCOUNT_NOT_FOUND`` or ``DECRYPTION_FAILED``.
            CredentialError: ``AUTH_METHOD_MISMATCH`` for a hardware account.
        """
        method = await self.store.get_auth_method(account_name)
        if not isinstance(method, PasswordAuth):
            msg = f"account {account_name!r} is not password-protected"
            raise CredentialError(msg, code="AUTH_METHOD_MISMATCH")
        key = await self.kdf.derive_symmetric_key(method, account_name, password=password)
        return await self._open(key, account_name, method)

    async def unlock_with_hardware(self, account_name: str) -> UnlockedAccount:
        """Open a hardware-protected account with its registered credential.

        Raises:
            SessionError: ``ACCOUNT_NOT_FOUND`` or ``DECRYPTION_FAILED``.
            CredentialError: ``AUTH_METHOD_MISMATCH``, ``CREDENTIAL_NOT_FOUND``,
                ``USER_CANCELLED`` or ``HARDWARE_UNSUPPORTED``.
        """
        method = await self.store.get_auth_method(account_name)
        if not isinstance(method, HardwareAuth):
            msg = f"account {account_name!r} is not hardware-protected"
            raise CredentialError(msg, code="AUTH_METHOD_MISMATCH")
        key = await self.kdf.derive_symmetric_key(method, account_name)
        return await self._open(key, account_name, method)

    async def sign_out(self, account: UnlockedAccount, *, forget: bool = False) -> None:
        """Close the account's session and wipe its key.

        Args:
            account: The unlocked account.
            forget: Also drop the re-authentication hint.
        """
        self.discovery.cancel(account.account_name, self.pool_address)
        await self.store.close_session(account.session)
        if forget:
            await self.kdf.clear_session_info()
        logger.info("Signed out of %r", account.account_name)

    # ------------------------------------------------------------------
    # Notes, deposits & withdrawals
    # ------------------------------------------------------------------

    def discover_notes(self, account: UnlockedAccount) -> AsyncIterator[DiscoveryProgress]:
        """Stream discovery progress for the account (supersedes a running scan)."""
        return self.discovery.discover(
            account.session, account.public_key, account.account_key, self.pool_address
        )

    async def sync_notes(self, account: UnlockedAccount) -> DiscoveryResult:
        """Run discovery to the end and return the account's note chains."""
        return await self.discovery.run(
            account.session, account.public_key, account.account_key, self.pool_address
        )

    async def get_unspent_notes(self, account: UnlockedAccount) -> list[Note]:
        return await self.store.get_unspent_notes(
            account.session, account.public_key, self.pool_address
        )

    async def generate_deposit(self, account: UnlockedAccount) -> DepositCommitment:
        """Reserve the next deposit index and return its commitment values."""
        return await self.deposits.generate_deposit_commitment(
            account.session, account.public_key, account.account_key, self.pool_address
        )

    async def prepare_withdrawal(
        self,
        account: UnlockedAccount,
        note: Note,
        amount: Decimal | str,
        recipient: str,
    ) -> PreparedWithdrawal:
        """Validate, prove and assemble a withdrawal from *note*."""
        request = WithdrawalRequest(
            note=note, amount=amount, recipient=recipient, account_key=account.account_key
        )
        return await self.withdrawals.process_withdrawal(
            account.session, account.public_key, request
        )

    async def execute_withdrawal(
        self, account: UnlockedAccount, prepared: PreparedWithdrawal
    ) -> str:
        """Hand a prepared withdrawal to the relayer; returns the transaction hash."""
        return await self.withdrawals.execute_prepared_withdrawal(
            account.session, account.public_key, prepared
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _open(
        self, key: SymmetricSessionKey, account_name: str, method: AuthMethod
    ) -> UnlockedAccount:
        session = await self.store.initialize_session(key, account_name, method)
        try:
            data = await self.store.get_account_data_by_name(session, account_name)
        except Exception:
            session.close()
            raise
        await self._remember(session.account_name, method)
        logger.info("Unlocked account %r", session.account_name)
        return UnlockedAccount(session=session, data=data)

    async def _remember(self, account_name: str, method: AuthMethod) -> None:
        await self.kdf.store_session_info(
            SessionInfo(
                account_name=account_name,
                auth_method=method.kind,
                last_auth_time=datetime.now(UTC),
                environment=self._config.session.environment,
                credential_id=method.credential_id if isinstance(method, HardwareAuth) else None,
            )
        )
