"""Encrypted account store.

One ``accounts`` row per account. Its index columns are public; its blob
is an AES-GCM encrypted JSON document::

    {
        "version": 1,
        "accountData": {...},                  # AccountData
        "noteCache": {"<pool>": {...}},         # NoteCache incl. discovery cursor
    }

All blob access goes through an open :class:`Session`. Notes and cursor
live in the same blob, so one row update commits both or neither.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select

from pool_wallet.auth.credentials import (
    AuthMethodKind,
    CredentialRecord,
    HardwareAuth,
    PasswordAuth,
    auth_method_from_record,
)
from pool_wallet.auth.kdf import normalize_account_name
from pool_wallet.errors.definitions import ErrAccountNotFound, ErrCredentialAlreadyExists
from pool_wallet.errors.wallet_errors import WalletError
from pool_wallet.keys.account import public_key_hash
from pool_wallet.models.account import AccountRecord
from pool_wallet.notes.models import DiscoveryCursor, NoteCache
from pool_wallet.store.cipher import decrypt_document, encrypt_document
from pool_wallet.store.data import AccountData
from pool_wallet.store.session import Session

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from pool_wallet.auth.credentials import AuthMethod
    from pool_wallet.auth.kdf import SymmetricSessionKey
    from pool_wallet.datastore.client import Datastore
    from pool_wallet.indexer.source import EventSource
    from pool_wallet.notes.models import Note, NoteChain

logger = logging.getLogger(__name__)

BLOB_VERSION = 1


def _pool_key(pool_address: str) -> str:
    return pool_address.lower()


def _associated_data(account_name: str) -> bytes:
    return normalize_account_name(account_name).encode("utf-8")


class EncryptedAccountStore:
    """Account-scoped, encrypted-at-rest persistence.

    Usage::

        store = EncryptedAccountStore(datastore, event_source=indexer)
        session = await store.initialize_session(key, "alice", PasswordAuth())
        await store.store_account_data(session, AccountData("alice", keys))
        session.close()
    """

    def __init__(self, datastore: Datastore, *, event_source: EventSource | None = None) -> None:
        self._ds = datastore
        self._event_source = event_source

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def initialize_session(
        self,
        key: SymmetricSessionKey,
        account_name: str,
        method: AuthMethod | None = None,
    ) -> Session:
        """Open a session for *account_name* with a derived key.

        If the account already has a blob, the key is checked against it
        right away so a wrong credential fails here with
        ``DECRYPTION_FAILED``.

        Args:
            key: Symmetric key from the key derivation service.
            account_name: Account to open.
            method: Auth method for a new account; read from the index for
                an existing one.

        Raises:
            SessionError: ``DECRYPTION_FAILED`` for a wrong key,
                ``ACCOUNT_NOT_FOUND`` for an unknown hardware account.
        """
        record = await self._get_record(account_name)
        if record is not None:
            method = self._method_of(record)
            if record.has_blob:
                self._decrypt(record, key.material)
            name = record.account_name
        else:
            if method is None:
                if key.method != AuthMethodKind.PASSWORD:
                    raise ErrAccountNotFound
                method = PasswordAuth()
            name = account_name.strip()

        session = Session(key, name, method)
        logger.info("Opened store session for account %r", session.account_name)
        return session

    async def close_session(self, session: Session) -> None:
        """Close *session* (sign-out)."""
        session.close()

    # ------------------------------------------------------------------
    # Index (no session needed)
    # ------------------------------------------------------------------

    async def account_exists(self, account_name: str) -> bool:
        """Whether an account with this name is registered."""
        return await self._get_record(account_name) is not None

    async def list_account_names(self) -> list[str]:
        """Names of all local accounts, oldest first."""
        async with self._ds.session() as db:
            stmt = select(AccountRecord.account_name).order_by(
                AccountRecord.created_at, AccountRecord.account_name
            )
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def get_credential_record(self, account_name: str) -> CredentialRecord | None:
        """Public credential metadata of an account."""
        record = await self._get_record(account_name)
        return self._to_credential(record) if record else None

    async def get_auth_method(self, account_name: str) -> AuthMethod:
        """Resolve the account's ``AuthMethod``.

        Raises:
            SessionError: ``ACCOUNT_NOT_FOUND``.
        """
        record = await self._get_record(account_name)
        if record is None:
            raise ErrAccountNotFound
        return self._method_of(record)

    async def store_passkey_data(self, record: CredentialRecord) -> None:
        """Bind a hardware credential to a new account name.

        Raises:
            CredentialError: ``CREDENTIAL_ALREADY_EXISTS`` if the name is taken.
        """
        async with self._ds.transaction() as db:
            if await self._select_record(db, record.account_name) is not None:
                raise ErrCredentialAlreadyExists
            db.add(
                AccountRecord(
                    account_name=record.account_name.strip(),
                    name_key=normalize_account_name(record.account_name),
                    auth_method=AuthMethodKind.HARDWARE.value,
                    credential_id=record.credential_id,
                    public_key_hash=record.public_key_hash,
                    created_at=record.created_at,
                )
            )
        logger.info("Stored hardware credential metadata for %r", record.account_name)

    async def get_passkey_data(self, account_name: str) -> CredentialRecord | None:
        """Hardware credential metadata, or ``None`` for password accounts."""
        record = await self._get_record(account_name)
        if record is None or record.auth_method != AuthMethodKind.HARDWARE.value:
            return None
        return self._to_credential(record)

    async def delete_account(self, account_name: str) -> bool:
        """Remove an account's index entry and blob. Returns True if deleted."""
        async with self._ds.session() as db:
            stmt = delete(AccountRecord).where(
                AccountRecord.name_key == normalize_account_name(account_name)
            )
            result = await db.execute(stmt)
            await db.commit()
            return result.rowcount > 0  # type: ignore[union-attr]

    # ------------------------------------------------------------------
    # Account data
    # ------------------------------------------------------------------

    async def store_account_data(self, session: Session, data: AccountData) -> None:
        """Encrypt and persist account data, creating the index entry if needed.

        Raises:
            SessionError: ``SESSION_NOT_INITIALIZED`` if the session is closed.
            CredentialError: ``CREDENTIAL_ALREADY_EXISTS`` if another
                account already holds these keys.
        """
        key = session.key_material()
        pk_hash = public_key_hash(data.public_key)
        async with session.lock, self._ds.transaction() as db:
            record = await self._select_record(db, session.account_name)
            other = await self._select_by_hash(db, pk_hash)
            if other is not None and (record is None or other.account_name != record.account_name):
                raise ErrCredentialAlreadyExists

            if record is None:
                record = self._new_record(session)
                db.add(record)
                document = self._empty_document()
            elif record.has_blob:
                document = self._decrypt(record, key)
            else:
                document = self._empty_document()

            record.public_key_hash = pk_hash
            document["accountData"] = data.to_dict()
            self._write(record, key, document)
        logger.info("Stored account data for %r", session.account_name)

    async def get_account_data(self, session: Session, public_key: str) -> AccountData:
        """Load account data by public key.

        Raises:
            SessionError: ``SESSION_NOT_INITIALIZED``, ``ACCOUNT_NOT_FOUND``
                or ``DECRYPTION_FAILED``.
        """
        key = session.key_material()
        async with self._ds.session() as db:
            record = await self._select_by_hash(db, public_key_hash(public_key))
        return self._account_data(record, key)

    async def get_account_data_by_name(self, session: Session, account_name: str) -> AccountData:
        """Load account data by account name.

        A missing account raises ``ACCOUNT_NOT_FOUND``; an existing
        account that this session's key cannot open raises
        ``DECRYPTION_FAILED``.
        """
        key = session.key_material()
        return self._account_data(await self._get_record(account_name), key)

    # ------------------------------------------------------------------
    # Note cache & discovery cursor
    # ------------------------------------------------------------------

    async def get_note_cache(
        self, session: Session, public_key: str, pool_address: str
    ) -> NoteCache:
        """Return the account's note cache for a pool (empty if never scanned)."""
        key = session.key_material()
        async with self._ds.session() as db:
            record = await self._select_record(db, session.account_name)
        document = self._owned_document(record, key, public_key)
        raw = document.get("noteCache", {}).get(_pool_key(pool_address))
        if raw is None:
            return NoteCache(pool_address=pool_address, public_key=public_key)
        return NoteCache.from_dict(raw)

    async def save_note_cache(self, session: Session, cache: NoteCache) -> None:
        """Persist notes and discovery cursor together in one blob write.

        The stored copy is merged in first: notes and deposit reservations
        written since *cache* was loaded are kept, and *cache* is updated in
        place with them. The cursor written is the one in *cache*.
        """

        def merge(stored: NoteCache) -> NoteCache:
            cache.absorb(stored)
            return cache

        await self._modify_note_cache(session, cache.public_key, cache.pool_address, merge)
        logger.debug(
            "Saved note cache for %r (%d chains, cursor=%s)",
            session.account_name,
            len(cache.chains),
            cache.cursor.last_cursor,
        )

    async def get_note_chains(
        self, session: Session, public_key: str, pool_address: str
    ) -> list[NoteChain]:
        """All note chains, ordered by deposit index."""
        cache = await self.get_note_cache(session, public_key, pool_address)
        return cache.sorted_chains()

    async def get_unspent_notes(
        self, session: Session, public_key: str, pool_address: str
    ) -> list[Note]:
        """The spendable head of every live chain."""
        cache = await self.get_note_cache(session, public_key, pool_address)
        return cache.unspent_notes()

    async def get_note(
        self,
        session: Session,
        public_key: str,
        pool_address: str,
        deposit_index: int,
        change_index: int,
    ) -> Note | None:
        """Re-read one note's current state from the store."""
        cache = await self.get_note_cache(session, public_key, pool_address)
        return cache.find_note(deposit_index, change_index)

    async def get_next_deposit_index(
        self, session: Session, public_key: str, pool_address: str
    ) -> int:
        """Deposit index to use for the next deposit."""
        cache = await self.get_note_cache(session, public_key, pool_address)
        return cache.next_deposit_index

    async def update_last_used_deposit_index(
        self,
        session: Session,
        public_key: str,
        pool_address: str,
        deposit_index: int,
    ) -> None:
        """Record that *deposit_index* has been used (never moves backwards)."""

        def bump(stored: NoteCache) -> NoteCache:
            stored.last_used_deposit_index = max(stored.last_used_deposit_index, deposit_index)
            return stored

        await self._modify_note_cache(session, public_key, pool_address, bump)

    async def reserve_deposit_index(
        self, session: Session, public_key: str, pool_address: str
    ) -> int:
        """Atomically claim the next deposit index and return it.

        Concurrent callers on the same session always get distinct indices.
        """

        def claim(stored: NoteCache) -> NoteCache:
            stored.last_used_deposit_index += 1
            return stored

        cache = await self._modify_note_cache(session, public_key, pool_address, claim)
        return cache.last_used_deposit_index

    async def release_deposit_index(
        self, session: Session, public_key: str, pool_address: str, deposit_index: int
    ) -> None:
        """Give back an unused reservation if nothing was reserved after it."""

        def give_back(stored: NoteCache) -> NoteCache:
            if (
                stored.last_used_deposit_index == deposit_index
                and deposit_index not in stored.chains
            ):
                stored.last_used_deposit_index -= 1
            return stored

        await self._modify_note_cache(session, public_key, pool_address, give_back)

    async def initialize_sync_baseline(
        self, session: Session, public_key: str, pool_address: str
    ) -> bool:
        """Start a new account's scan at the newest event instead of genesis.

        Returns:
            True if a baseline was recorded; False if the event source was
            unavailable and the account will fall back to a full scan.
        """
        session.key_material()
        if self._event_source is None:
            logger.warning("No event source; %r will scan from genesis", session.account_name)
            return False
        try:
            latest = await self._event_source.get_latest_cursor(pool_address)
        except WalletError:
            logger.warning(
                "Sync baseline lookup failed for %r; falling back to full scan",
                session.account_name,
                exc_info=True,
            )
            return False

        cache = NoteCache(
            pool_address=pool_address,
            public_key=public_key,
            cursor=DiscoveryCursor(last_cursor=latest, last_sync_time=datetime.now(UTC)),
        )
        await self.save_note_cache(session, cache)
        logger.info("Recorded sync baseline for %r", session.account_name)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _modify_note_cache(
        self,
        session: Session,
        public_key: str,
        pool_address: str,
        modify: Callable[[NoteCache], NoteCache],
    ) -> NoteCache:
        """Read, modify and write one pool's cache under the session lock."""
        key = session.key_material()
        async with session.lock, self._ds.transaction() as db:
            record = await self._select_record(db, session.account_name)
            document = self._owned_document(record, key, public_key)
            caches = document.setdefault("noteCache", {})
            raw = caches.get(_pool_key(pool_address))
            if raw is None:
                stored = NoteCache(pool_address=pool_address, public_key=public_key)
            else:
                stored = NoteCache.from_dict(raw)
            cache = modify(stored)
            caches[_pool_key(pool_address)] = cache.to_dict()
            self._write(record, key, document)
        return cache

    async def _get_record(self, account_name: str) -> AccountRecord | None:
        async with self._ds.session() as db:
            return await self._select_record(db, account_name)

    @staticmethod
    async def _select_record(db: AsyncSession, account_name: str) -> AccountRecord | None:
        stmt = select(AccountRecord).where(
            AccountRecord.name_key == normalize_account_name(account_name)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def _select_by_hash(db: AsyncSession, pk_hash: str) -> AccountRecord | None:
        stmt = select(AccountRecord).where(AccountRecord.public_key_hash == pk_hash)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _method_of(record: AccountRecord) -> AuthMethod:
        return auth_method_from_record(
            record.auth_method,
            credential_id=record.credential_id,
            user_salt_hex=record.user_salt,
        )

    @staticmethod
    def _new_record(session: Session) -> AccountRecord:
        method = session.method
        return AccountRecord(
            account_name=session.account_name,
            name_key=normalize_account_name(session.account_name),
            auth_method=method.kind.value,
            credential_id=method.credential_id if isinstance(method, HardwareAuth) else None,
            user_salt=method.user_salt_hex if isinstance(method, PasswordAuth) else "",
        )

    @staticmethod
    def _empty_document() -> dict[str, Any]:
        return {"version": BLOB_VERSION, "accountData": None, "noteCache": {}}

    @staticmethod
    def _decrypt(record: AccountRecord, key: bytes) -> dict[str, Any]:
        if record.nonce is None or record.ciphertext is None:
            raise ErrAccountNotFound
        return decrypt_document(
            key,
            record.nonce,
            record.ciphertext,
            associated_data=_associated_data(record.account_name),
        )

    @staticmethod
    def _write(record: AccountRecord, key: bytes, document: dict[str, Any]) -> None:
        nonce, ciphertext = encrypt_document(
            key, document, associated_data=_associated_data(record.account_name)
        )
        record.nonce = nonce
        record.ciphertext = ciphertext
        record.blob_version = BLOB_VERSION

    def _account_data(self, record: AccountRecord | None, key: bytes) -> AccountData:
        if record is None or not record.has_blob:
            raise ErrAccountNotFound
        raw = self._decrypt(record, key).get("accountData")
        if raw is None:
            raise ErrAccountNotFound
        return AccountData.from_dict(raw)

    def _owned_document(
        self, record: AccountRecord | None, key: bytes, public_key: str
    ) -> dict[str, Any]:
        """Decrypt the session account's blob and check it belongs to *public_key*."""
        if record is None or not record.has_blob:
            raise ErrAccountNotFound
        if record.public_key_hash != public_key_hash(public_key):
            raise ErrAccountNotFound
        return self._decrypt(record, key)

    @staticmethod
    def _to_credential(record: AccountRecord) -> CredentialRecord:
        return CredentialRecord(
            account_name=record.account_name,
            method=AuthMethodKind(record.auth_method),
            credential_id=record.credential_id,
            public_key_hash=record.public_key_hash,
            created_at=record.created_at,
        )
