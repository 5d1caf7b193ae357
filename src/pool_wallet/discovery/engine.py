"""Note discovery — rebuild an account's note chains from the public event log.

Pages of pool activity are fetched in ascending order starting after the
persisted cursor. For every page:

1. Live chains are extended: a withdrawal revealing the nullifier hash of
   a chain's last note spends it, and its change commitment becomes the
   next note of the chain.
2. New deposits are matched: reserved indices that have not confirmed yet
   are retried, then indices are tried in order from the next unused one,
   comparing the derived precommitment with the ones published in the page.
3. Notes and cursor are saved in one store write, then progress is yielded.

Chains are keyed by ``(deposit_index, change_index)``, so re-running over
pages already merged changes nothing.
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager, nullcontext
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import httpx

from pool_wallet.discovery.progress import DiscoveryProgress, DiscoveryResult
from pool_wallet.errors.wallet_errors import DiscoveryError, WalletError
from pool_wallet.indexer.models import Activity, ActivityType
from pool_wallet.notes.derivation import NoteDeriver
from pool_wallet.notes.models import Note, NoteChain, NoteStatus

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from pool_wallet.discovery.cancellation import CancellationToken
    from pool_wallet.indexer.source import EventSource
    from pool_wallet.metrics.collector import EngineMetrics
    from pool_wallet.notes.derivation import FieldHasher
    from pool_wallet.notes.models import NoteCache
    from pool_wallet.store.account_store import EncryptedAccountStore
    from pool_wallet.store.session import Session

logger = logging.getLogger(__name__)


class _PageIndex:
    """Lookups over one page of activities."""

    def __init__(self, activities: list[Activity]) -> None:
        self.deposits: dict[int, Activity] = {}
        self.withdrawals: dict[int, Activity] = {}
        self.ragequits: dict[str, Activity] = {}
        for activity in activities:
            if activity.type == ActivityType.DEPOSIT and activity.precommitment_hash is not None:
                self.deposits.setdefault(activity.precommitment_hash, activity)
            elif activity.type == ActivityType.WITHDRAWAL and activity.spent_nullifier is not None:
                self.withdrawals.setdefault(activity.spent_nullifier, activity)
            elif activity.type == ActivityType.RAGEQUIT and activity.label is not None:
                self.ragequits.setdefault(activity.label, activity)


class NoteDiscoveryEngine:
    """Paginated, resumable, cancellable note discovery.

    Usage::

        engine = NoteDiscoveryEngine(store, indexer, page_size=100)
        async for progress in engine.discover(session, pk, account_key, pool):
            print(progress.pages_processed)
    """

    def __init__(
        self,
        store: EncryptedAccountStore,
        event_source: EventSource,
        *,
        page_size: int = 100,
        hasher: FieldHasher | None = None,
        metrics: EngineMetrics | None = None,
    ) -> None:
        if page_size < 1:
            msg = "page_size must be at least 1"
            raise ValueError(msg)
        self._store = store
        self._source = event_source
        self._page_size = page_size
        self._hasher = hasher
        self._metrics = metrics

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def discover(
        self,
        session: Session,
        public_key: str,
        account_key: int,
        pool_address: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[DiscoveryProgress]:
        """Scan new pages and yield progress after each one.

        The last value yielded has ``complete`` or ``cancelled`` set.

        Raises:
            DiscoveryError: The event source failed; the cursor stays at
                the last merged page and discovery may simply be re-run.
            SessionError: The session was closed or the blob is unreadable.
        """
        cache = await self._store.get_note_cache(session, public_key, pool_address)
        deriver = NoteDeriver(account_key, hasher=self._hasher)
        cursor = cache.cursor.last_cursor
        pages = checked = matched = 0

        logger.info(
            "Starting note discovery for %r in pool %s (cursor=%s)",
            session.account_name,
            pool_address,
            cursor,
        )

        with self._track():
            while True:
                if cancel_token is not None and cancel_token.cancelled:
                    logger.info(
                        "Note discovery for %r cancelled after %d pages",
                        session.account_name,
                        pages,
                    )
                    yield DiscoveryProgress(
                        pages_processed=pages,
                        deposits_checked=checked,
                        deposits_matched=matched,
                        last_cursor=cursor,
                        cancelled=True,
                    )
                    return

                try:
                    page = await self._source.get_activities(
                        pool_address, limit=self._page_size, after=cursor
                    )
                except (WalletError, httpx.HTTPError) as exc:
                    msg = f"event log fetch failed after {pages} pages: {exc}"
                    raise DiscoveryError(msg, cursor=cursor, pages_processed=pages) from exc

                if not page.items:
                    yield DiscoveryProgress(
                        pages_processed=pages,
                        deposits_checked=checked,
                        deposits_matched=matched,
                        last_cursor=cursor,
                        complete=True,
                    )
                    break

                page_checked, page_matched = self.merge_page(cache, deriver, page.items)
                pages += 1
                checked += page_checked
                matched += page_matched

                cache.cursor.last_cursor = page.end_cursor or cursor
                cache.cursor.last_block = max(
                    cache.cursor.last_block, max(a.block_number for a in page.items)
                )
                cache.cursor.pages_processed += 1
                cache.cursor.deposits_checked += page_checked
                cache.cursor.last_sync_time = datetime.now(UTC)
                await self._store.save_note_cache(session, cache)
                cursor = cache.cursor.last_cursor
                if self._metrics is not None:
                    self._metrics.record_page(
                        deposits_checked=page_checked, deposits_matched=page_matched
                    )

                complete = not page.has_next_page or page.end_cursor is None
                yield DiscoveryProgress(
                    pages_processed=pages,
                    current_page_activity_count=len(page.items),
                    deposits_checked=checked,
                    deposits_matched=matched,
                    last_cursor=cursor,
                    complete=complete,
                )
                if complete:
                    break

        logger.info(
            "Note discovery for %r complete: %d pages, %d deposits matched",
            session.account_name,
            pages,
            matched,
        )

    async def run(
        self,
        session: Session,
        public_key: str,
        account_key: int,
        pool_address: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> DiscoveryResult:
        """Drive :meth:`discover` to the end and return the resulting chains."""
        last = DiscoveryProgress()
        async for progress in self.discover(
            session, public_key, account_key, pool_address, cancel_token=cancel_token
        ):
            last = progress
        chains = await self.get_chains(session, public_key, pool_address)
        return DiscoveryResult(progress=last, chains=chains)

    async def get_chains(
        self, session: Session, public_key: str, pool_address: str
    ) -> list[NoteChain]:
        """Chains currently cached for the account, ordered by deposit index."""
        return await self._store.get_note_chains(session, public_key, pool_address)

    def merge_page(
        self, cache: NoteCache, deriver: NoteDeriver, activities: list[Activity]
    ) -> tuple[int, int]:
        """Merge one page into *cache* in memory.

        Returns:
            ``(deposits_checked, deposits_matched)`` for the page.
        """
        index = _PageIndex(activities)

        for chain in cache.live_chains():
            self._extend_chain(chain, deriver, index)

        checked = matched = 0
        # reserved indices may confirm out of order
        for deposit_index in cache.unconfirmed_deposit_indices():
            if not index.deposits:
                break
            checked += 1
            pre = deriver.precommitment(cache.pool_address, deposit_index)
            activity = index.deposits.get(pre)
            if activity is not None:
                matched += self._add_deposit(cache, deriver, index, deposit_index, activity)

        deposit_index = cache.next_deposit_index
        while index.deposits:
            checked += 1
            pre = deriver.precommitment(cache.pool_address, deposit_index)
            activity = index.deposits.get(pre)
            if activity is None:
                break
            matched += self._add_deposit(cache, deriver, index, deposit_index, activity)
            deposit_index += 1

        return checked, matched

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _track(self) -> AbstractContextManager[None]:
        if self._metrics is None:
            return nullcontext()
        return self._metrics.track_discovery()

    def _add_deposit(
        self,
        cache: NoteCache,
        deriver: NoteDeriver,
        index: _PageIndex,
        deposit_index: int,
        activity: Activity,
    ) -> int:
        chain = NoteChain(
            deposit_index=deposit_index,
            notes=[self._deposit_note(cache.pool_address, deposit_index, activity)],
        )
        added = cache.add_chain(chain)
        if added:
            logger.debug("Matched deposit %d in tx %s", deposit_index, activity.transaction_hash)
        self._extend_chain(cache.chains[deposit_index], deriver, index)
        return int(added)

    @staticmethod
    def _deposit_note(pool_address: str, deposit_index: int, activity: Activity) -> Note:
        return Note(
            pool_address=pool_address,
            deposit_index=deposit_index,
            change_index=0,
            amount=activity.amount,
            transaction_hash=activity.transaction_hash,
            block_number=activity.block_number,
            timestamp=activity.timestamp,
            status=NoteStatus.UNSPENT,
            label=activity.label or "0",
        )

    @staticmethod
    def _extend_chain(chain: NoteChain, deriver: NoteDeriver, index: _PageIndex) -> None:
        """Follow withdrawals (and a final ragequit) from the chain's head."""
        while chain.is_live:
            head = chain.last
            nullifier = deriver.nullifier_hash(
                head.pool_address, head.deposit_index, head.change_index
            )
            withdrawal = index.withdrawals.get(nullifier)
            if withdrawal is not None and withdrawal.new_commitment is not None:
                remaining = max(head.amount - withdrawal.amount, 0)
                change = Note(
                    pool_address=head.pool_address,
                    deposit_index=head.deposit_index,
                    change_index=head.change_index + 1,
                    amount=remaining,
                    transaction_hash=withdrawal.transaction_hash,
                    block_number=withdrawal.block_number,
                    timestamp=withdrawal.timestamp,
                    status=NoteStatus.UNSPENT if remaining > 0 else NoteStatus.SPENT,
                    label=head.label,
                )
                chain.spend_last_and_append(change)
                logger.debug(
                    "Deposit %d: change note %d with %d remaining",
                    head.deposit_index,
                    change.change_index,
                    remaining,
                )
                continue

            ragequit = index.ragequits.get(head.label)
            if ragequit is not None and head.label != "0":
                chain.notes[-1] = head.mark_spent()
                logger.debug("Deposit %d: exited by ragequit", head.deposit_index)
            break
