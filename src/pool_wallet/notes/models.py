"""Note data models — Note, NoteChain, DiscoveryCursor, NoteCache.

Plain dataclasses serialized into the encrypted account blob. Amounts are
integer base units (wei) and are written as decimal strings.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Self

# ---------------------------------------------------------------------------
# Note
# ---------------------------------------------------------------------------


class NoteStatus(enum.StrEnum):
    """Spendability of a note."""

    UNSPENT = "unspent"
    SPENT = "spent"


@dataclass(frozen=True)
class Note:
    """A single leaf of value owned by the account.

    Attributes:
        pool_address: Pool contract the note lives in.
        deposit_index: Index of the originating deposit.
        change_index: 0 for the deposit note, +1 per partial withdrawal.
        amount: Value in base units.
        transaction_hash: Transaction that created the note.
        block_number: Block of that transaction.
        timestamp: Unix timestamp of that block.
        status: ``unspent`` or ``spent``.
        label: On-chain label of the deposit (decimal string).
    """

    pool_address: str
    deposit_index: int
    change_index: int
    amount: int
    transaction_hash: str = ""
    block_number: int = 0
    timestamp: int = 0
    status: NoteStatus = NoteStatus.UNSPENT
    label: str = "0"

    @property
    def key(self) -> tuple[int, int]:
        """Identity of the note within an account and pool."""
        return (self.deposit_index, self.change_index)

    @property
    def is_spent(self) -> bool:
        return self.status == NoteStatus.SPENT

    def mark_spent(self) -> Note:
        """Return a copy with ``status=spent``."""
        return replace(self, status=NoteStatus.SPENT)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict."""
        return {
            "poolAddress": self.pool_address,
            "depositIndex": self.deposit_index,
            "changeIndex": self.change_index,
            "amount": str(self.amount),
            "transactionHash": self.transaction_hash,
            "blockNumber": str(self.block_number),
            "timestamp": str(self.timestamp),
            "status": self.status.value,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create from a plain dict."""
        return cls(
            pool_address=data["poolAddress"],
            deposit_index=int(data["depositIndex"]),
            change_index=int(data["changeIndex"]),
            amount=int(data["amount"]),
            transaction_hash=data.get("transactionHash", ""),
            block_number=int(data.get("blockNumber", 0)),
            timestamp=int(data.get("timestamp", 0)),
            status=NoteStatus(data.get("status", NoteStatus.UNSPENT)),
            label=str(data.get("label", "0")),
        )


# ---------------------------------------------------------------------------
# NoteChain
# ---------------------------------------------------------------------------


@dataclass
class NoteChain:
    """Notes sharing a ``deposit_index``, ordered by ``change_index``.

    Every element but the last is spent; the last one carries the
    chain's current balance.
    """

    deposit_index: int
    notes: list[Note] = field(default_factory=list)

    @property
    def last(self) -> Note:
        return self.notes[-1]

    @property
    def balance(self) -> int:
        """Current spendable amount (0 for a fully spent chain)."""
        if not self.notes or self.last.is_spent:
            return 0
        return self.last.amount

    @property
    def is_live(self) -> bool:
        """Whether the chain still ends in an unspent note with value."""
        return bool(self.notes) and not self.last.is_spent and self.last.amount > 0

    def get(self, change_index: int) -> Note | None:
        for note in self.notes:
            if note.change_index == change_index:
                return note
        return None

    def spend_last_and_append(self, change: Note) -> bool:
        """Mark the current head spent and append its change note.

        Idempotent: a change note already present is left untouched.

        Returns:
            True if the chain changed.
        """
        if self.get(change.change_index) is not None:
            return False
        if change.change_index != self.last.change_index + 1:
            msg = (
                f"change note {change.change_index} does not follow "
                f"{self.last.change_index} in deposit {self.deposit_index}"
            )
            raise ValueError(msg)
        self.notes[-1] = self.last.mark_spent()
        self.notes.append(change)
        return True

    def union(self, other: NoteChain) -> NoteChain:
        """Combine two copies of the same chain note by note.

        A note spent in either copy stays spent.
        """
        by_index = {n.change_index: n for n in other.notes}
        for note in self.notes:
            seen = by_index.get(note.change_index)
            if seen is None or note.is_spent or not seen.is_spent:
                by_index[note.change_index] = note
        return NoteChain(self.deposit_index, [by_index[i] for i in sorted(by_index)])

    def check_invariant(self) -> None:
        """Raise ``ValueError`` if ordering or spent-prefix rules are broken."""
        for expected, note in enumerate(self.notes):
            if note.deposit_index != self.deposit_index or note.change_index != expected:
                msg = f"note {note.key} out of order in chain {self.deposit_index}"
                raise ValueError(msg)
        for note in self.notes[:-1]:
            if not note.is_spent:
                msg = f"note {note.key} is unspent but not last in its chain"
                raise ValueError(msg)

    def to_list(self) -> list[dict[str, Any]]:
        return [n.to_dict() for n in self.notes]

    @classmethod
    def from_list(cls, items: list[dict[str, Any]]) -> Self:
        notes = sorted((Note.from_dict(i) for i in items), key=lambda n: n.change_index)
        if not notes:
            msg = "cannot build an empty note chain"
            raise ValueError(msg)
        return cls(deposit_index=notes[0].deposit_index, notes=notes)


# ---------------------------------------------------------------------------
# Discovery cursor & cache
# ---------------------------------------------------------------------------


@dataclass
class DiscoveryCursor:
    """Resumable position in the pool's event log.

    Attributes:
        last_cursor: Opaque indexer cursor of the last fully processed page.
        last_block: Highest block number seen in processed pages.
        pages_processed: Total pages merged so far.
        deposits_checked: Total deposit indices tested so far.
        last_sync_time: When the cursor last advanced.
    """

    last_cursor: str | None = None
    last_block: int = 0
    pages_processed: int = 0
    deposits_checked: int = 0
    last_sync_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastCursor": self.last_cursor,
            "lastBlock": self.last_block,
            "pagesProcessed": self.pages_processed,
            "depositsChecked": self.deposits_checked,
            "lastSyncTime": self.last_sync_time.isoformat() if self.last_sync_time else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        sync_time = data.get("lastSyncTime")
        return cls(
            last_cursor=data.get("lastCursor"),
            last_block=int(data.get("lastBlock", 0)),
            pages_processed=int(data.get("pagesProcessed", 0)),
            deposits_checked=int(data.get("depositsChecked", 0)),
            last_sync_time=datetime.fromisoformat(sync_time) if sync_time else None,
        )


@dataclass
class NoteCache:
    """All notes of one account in one pool plus the scan position."""

    pool_address: str
    public_key: str
    chains: dict[int, NoteChain] = field(default_factory=dict)
    last_used_deposit_index: int = -1
    cursor: DiscoveryCursor = field(default_factory=DiscoveryCursor)

    @property
    def next_deposit_index(self) -> int:
        return self.last_used_deposit_index + 1

    def unconfirmed_deposit_indices(self) -> list[int]:
        """Reserved deposit indices not yet seen on chain."""
        return [i for i in range(self.next_deposit_index) if i not in self.chains]

    def sorted_chains(self) -> list[NoteChain]:
        return [self.chains[i] for i in sorted(self.chains)]

    def live_chains(self) -> list[NoteChain]:
        return [c for c in self.sorted_chains() if c.is_live]

    def unspent_notes(self) -> list[Note]:
        return [c.last for c in self.live_chains()]

    def find_note(self, deposit_index: int, change_index: int) -> Note | None:
        chain = self.chains.get(deposit_index)
        return chain.get(change_index) if chain else None

    def add_chain(self, chain: NoteChain) -> bool:
        """Insert a newly discovered chain; ignored if the deposit is already known."""
        if chain.deposit_index in self.chains:
            return False
        self.chains[chain.deposit_index] = chain
        self.last_used_deposit_index = max(self.last_used_deposit_index, chain.deposit_index)
        return True

    def absorb(self, other: NoteCache) -> None:
        """Fold the notes and deposit reservations of *other* into this cache.

        The cursor is kept as is.
        """
        self.last_used_deposit_index = max(
            self.last_used_deposit_index, other.last_used_deposit_index
        )
        for index, chain in other.chains.items():
            mine = self.chains.get(index)
            self.chains[index] = chain if mine is None else mine.union(chain)

    def to_dict(self) -> dict[str, Any]:
        return {
            "poolAddress": self.pool_address,
            "publicKey": self.public_key,
            "notes": [c.to_list() for c in self.sorted_chains()],
            "lastUsedDepositIndex": self.last_used_deposit_index,
            "cursor": self.cursor.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        chains = [NoteChain.from_list(items) for items in data.get("notes", []) if items]
        return cls(
            pool_address=data["poolAddress"],
            public_key=data["publicKey"],
            chains={c.deposit_index: c for c in chains},
            last_used_deposit_index=int(data.get("lastUsedDepositIndex", -1)),
            cursor=DiscoveryCursor.from_dict(data.get("cursor", {})),
        )
