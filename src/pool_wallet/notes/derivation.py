"""Deterministic note secrets, commitments and nullifier hashes.

Every note is identified by ``(pool_address, deposit_index, change_index)``.
Its nullifier and secret are keyed PRFs of the account key over a typed
context, with separate domains for deposit and change notes:

    ctx    = keccak(address || u64 deposit || u64 change || tag) mod F
    prf    = H(account_key, H(ctx, dom))
    pre    = H(nullifier, secret)
    commit = H(amount, label, pre)
    spent  = H(nullifier)

``H`` is the proving circuit's field hash and is injected as a
:class:`FieldHasher`; :class:`KeccakFieldHasher` is the built-in default.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from pool_wallet.keys.address import address_to_bytes
from pool_wallet.utils.crypto import field_from_keccak, keccak256, mod_field

if TYPE_CHECKING:
    from pool_wallet.notes.models import Note

DOMAIN_NAMESPACE = "pool-wallet"


class FieldHasher(Protocol):
    """Hash of field elements into the proving field."""

    def hash(self, *inputs: int) -> int: ...


class KeccakFieldHasher:
    """Keccak-256 over 32-byte big-endian words, reduced into the field."""

    def hash(self, *inputs: int) -> int:
        if not inputs:
            msg = "hash requires at least one input"
            raise ValueError(msg)
        data = b"".join(mod_field(i).to_bytes(32, "big") for i in inputs)
        return field_from_keccak(data)


def _tag(kind: str) -> bytes:
    return keccak256(f"{DOMAIN_NAMESPACE}:{kind}V1".encode())


TAG_DEPOSIT_NULLIFIER = _tag("DepositNullifier")
TAG_DEPOSIT_SECRET = _tag("DepositSecret")
TAG_CHANGE_NULLIFIER = _tag("ChangeNullifier")
TAG_CHANGE_SECRET = _tag("ChangeSecret")


@dataclass(frozen=True, repr=False)
class NoteSecrets:
    """Nullifier and secret of one note. Never logged."""

    nullifier: int
    secret: int

    def __repr__(self) -> str:
        return "NoteSecrets(<redacted>)"


class NoteDeriver:
    """Derives note material for one account key.

    Usage::

        deriver = NoteDeriver(keys.account_key)
        pre = deriver.precommitment(pool, deposit_index=0, change_index=0)
    """

    def __init__(self, account_key: int, *, hasher: FieldHasher | None = None) -> None:
        self._key = mod_field(account_key)
        self._hasher = hasher or KeccakFieldHasher()

    def __repr__(self) -> str:
        return "NoteDeriver(account_key=<redacted>)"

    @property
    def hasher(self) -> FieldHasher:
        return self._hasher

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def secrets(self, pool_address: str, deposit_index: int, change_index: int) -> NoteSecrets:
        """Nullifier and secret for a deposit (change 0) or change note."""
        if deposit_index < 0 or change_index < 0:
            msg = "note indices must be non-negative"
            raise ValueError(msg)
        if change_index == 0:
            tags = (TAG_DEPOSIT_NULLIFIER, TAG_DEPOSIT_SECRET)
        else:
            tags = (TAG_CHANGE_NULLIFIER, TAG_CHANGE_SECRET)
        return NoteSecrets(
            nullifier=self._prf(pool_address, deposit_index, change_index, tags[0]),
            secret=self._prf(pool_address, deposit_index, change_index, tags[1]),
        )

    def precommitment(self, pool_address: str, deposit_index: int, change_index: int = 0) -> int:
        """``H(nullifier, secret)``, the value published by a deposit."""
        s = self.secrets(pool_address, deposit_index, change_index)
        return self._hasher.hash(s.nullifier, s.secret)

    def nullifier_hash(self, pool_address: str, deposit_index: int, change_index: int) -> int:
        """``H(nullifier)``, the value revealed on-chain when the note is spent."""
        s = self.secrets(pool_address, deposit_index, change_index)
        return self._hasher.hash(s.nullifier)

    def commitment(self, note: Note) -> int:
        """Full note commitment ``H(amount, label, precommitment)``."""
        pre = self.precommitment(note.pool_address, note.deposit_index, note.change_index)
        return self._hasher.hash(note.amount, int(note.label), pre)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _prf(self, pool_address: str, deposit_index: int, change_index: int, tag: bytes) -> int:
        ctx = context_field(pool_address, deposit_index, change_index, tag)
        dom = field_from_keccak(tag)
        return self._hasher.hash(self._key, self._hasher.hash(ctx, dom))


def context_field(pool_address: str, deposit_index: int, change_index: int, tag: bytes) -> int:
    """Pack ``(address, uint64, uint64, bytes32)`` and map it into the field."""
    packed = address_to_bytes(pool_address) + struct.pack(">QQ", deposit_index, change_index) + tag
    return field_from_keccak(packed)


def field_to_hex(value: int) -> str:
    """Render a field element as a 0x-prefixed 32-byte hex string."""
    return "0x" + value.to_bytes(32, "big").hex()


def parse_field(value: str | int) -> int:
    """Parse a decimal or 0x-hex field element as delivered by the indexer."""
    if isinstance(value, int):
        return value
    text = value.strip()
    if text.lower().startswith("0x"):
        return int(text, 16)
    return int(text)
