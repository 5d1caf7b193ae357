"""Discovery progress values and final result."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pool_wallet.notes.models import Note, NoteChain


@dataclass(frozen=True)
class DiscoveryProgress:
    """Snapshot emitted after each merged page, and once at the end.

    Attributes:
        pages_processed: Pages merged during this run.
        current_page_activity_count: Activities in the page just merged.
        deposits_checked: Deposit indices tested during this run.
        deposits_matched: Deposits found to belong to the account.
        last_cursor: Persisted cursor after this page.
        complete: The event log has no further pages.
        cancelled: The run stopped on a cancellation request.
    """

    pages_processed: int = 0
    current_page_activity_count: int = 0
    deposits_checked: int = 0
    deposits_matched: int = 0
    last_cursor: str | None = None
    complete: bool = False
    cancelled: bool = False

    @property
    def finished(self) -> bool:
        return self.complete or self.cancelled

    def to_dict(self) -> dict[str, Any]:
        return {
            "pagesProcessed": self.pages_processed,
            "currentPageActivityCount": self.current_page_activity_count,
            "depositsChecked": self.deposits_checked,
            "depositsMatched": self.deposits_matched,
            "lastCursor": self.last_cursor,
            "complete": self.complete,
            "cancelled": self.cancelled,
        }


@dataclass
class DiscoveryResult:
    """Outcome of a full discovery run."""

    progress: DiscoveryProgress
    chains: list[NoteChain] = field(default_factory=list)

    @property
    def unspent_notes(self) -> list[Note]:
        return [c.last for c in self.chains if c.is_live]

    @property
    def balance(self) -> int:
        """Sum of all chain balances in base units."""
        return sum(c.balance for c in self.chains)
