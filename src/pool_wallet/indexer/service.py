"""Indexer GraphQL client — activities, state tree, ASP root, health check.

Provides an async HTTP client for the pool indexer's GraphQL endpoint:
- activitys — Deposit / withdrawal / ragequit events, cursor-paginated
- merkleTreeLeafs — State tree commitments in leaf order
- associationSetUpdates — Latest ASP root
- _meta — Indexer status and latest indexed block
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx

from pool_wallet.errors.chain_errors import IndexerError
from pool_wallet.indexer import queries
from pool_wallet.indexer.models import Activity, ActivityPage, AspRoot, StateTreeLeaf

if TYPE_CHECKING:
    from pool_wallet.config.settings import IndexerConfig

logger = logging.getLogger(__name__)

_LEAF_PAGE_SIZE = 1000


class IndexerService:
    """Async GraphQL client for the pool indexer.

    Requests are spaced by at least ``config.request_interval`` seconds.

    Usage::

        indexer = IndexerService(config.indexer)
        await indexer.connect()
        try:
            page = await indexer.get_activities(pool, limit=100)
        finally:
            await indexer.close()
    """

    def __init__(self, config: IndexerConfig) -> None:
        """Initialize the indexer service.

        Args:
            config: Indexer configuration (url, auth_token, page_size, ...).
        """
        self._config = config
        self._client: httpx.AsyncClient | None = None
        self._throttle = asyncio.Lock()
        self._last_request = 0.0

    async def connect(self) -> None:  # noqa: ASYNC910
        """Create the underlying HTTP client."""
        headers: dict[str, str] = {
            "Content-Type": "application/json",
        }
        if self._config.auth_token:
            headers["Authorization"] = f"Bearer {self._config.auth_token}"

        self._client = httpx.AsyncClient(
            base_url=self._config.url.rstrip("/"),
            headers=headers,
            timeout=self._config.timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def is_connected(self) -> bool:
        """Check if the HTTP client is active."""
        return self._client is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_activities(
        self,
        pool_id: str,
        *,
        limit: int | None = None,
        after: str | None = None,
        order_direction: str = "asc",
    ) -> ActivityPage:
        """Fetch one page of pool activities.

        Args:
            pool_id: Pool contract address.
            limit: Page size (defaults to ``config.page_size``).
            after: Opaque cursor; the page starts strictly after it.
            order_direction: ``asc`` or ``desc`` by timestamp.

        Returns:
            ActivityPage with items and pagination info.

        Raises:
            IndexerError: On HTTP or GraphQL errors.
        """
        data = await self._query(
            queries.GET_ACTIVITIES,
            {
                "poolId": pool_id.lower(),
                "limit": limit or self._config.page_size,
                "after": after,
                "orderDirection": order_direction,
            },
            "get_activities",
        )
        return ActivityPage.from_dict(data.get("activitys") or {})

    async def get_latest_cursor(self, pool_id: str) -> str | None:
        """Return the cursor of the newest activity, or None for an empty pool.

        Used as a sync baseline: scanning ascending after this cursor only
        sees events newer than account creation.
        """
        page = await self.get_activities(pool_id, limit=1, order_direction="desc")
        if not page.items:
            return None
        return page.start_cursor or page.end_cursor

    async def get_deposit_by_precommitment(
        self, pool_id: str, precommitment: int
    ) -> Activity | None:
        """Return the deposit that published *precommitment*, if any.

        Raises:
            IndexerError: On HTTP or GraphQL errors.
        """
        data = await self._query(
            queries.GET_DEPOSIT_BY_PRECOMMITMENT,
            {"poolId": pool_id.lower(), "precommitmentHash": str(precommitment)},
            "get_deposit_by_precommitment",
        )
        items = (data.get("activitys") or {}).get("items") or []
        return Activity.from_dict(items[0]) if items else None

    async def get_state_tree_leaves(self, pool_id: str) -> list[StateTreeLeaf]:
        """Fetch every state tree leaf of the pool, ordered by leaf index.

        Raises:
            IndexerError: On HTTP or GraphQL errors.
        """
        leaves: list[StateTreeLeaf] = []
        after: str | None = None
        while True:
            data = await self._query(
                queries.GET_STATE_TREE_LEAVES,
                {"poolId": pool_id.lower(), "limit": _LEAF_PAGE_SIZE, "after": after},
                "get_state_tree_leaves",
            )
            conn = data.get("merkleTreeLeafs") or {}
            leaves.extend(StateTreeLeaf.from_dict(i) for i in conn.get("items") or [])
            page_info = conn.get("pageInfo") or {}
            after = page_info.get("endCursor")
            if not page_info.get("hasNextPage") or not after:
                break
        logger.debug("Fetched %d state tree leaves for %s", len(leaves), pool_id)
        return leaves

    async def get_latest_asp_root(self) -> AspRoot | None:
        """Return the newest ASP root, or None if none was published.

        Raises:
            IndexerError: On HTTP or GraphQL errors.
        """
        data = await self._query(queries.GET_LATEST_ASP_ROOT, {}, "get_latest_asp_root")
        items = (data.get("associationSetUpdates") or {}).get("items") or []
        if not items:
            return None
        return AspRoot.from_dict(items[0])

    async def get_latest_indexed_block(self) -> int:
        """Highest block number the indexer has processed across its chains.

        Raises:
            IndexerError: On HTTP or GraphQL errors.
        """
        data = await self._query(queries.HEALTH_CHECK, {}, "get_latest_indexed_block")
        status = (data.get("_meta") or {}).get("status") or {}
        best = 0
        for chain in status.values():
            if not isinstance(chain, dict):
                continue
            block = chain.get("block") or {}
            number = block.get("number")
            if number is not None:
                best = max(best, int(number))
        return best

    async def health_check(self) -> bool:
        """Check indexer connectivity and health.

        Returns:
            True if the indexer answers the status query.
        """
        try:
            data = await self._query(queries.HEALTH_CHECK, {}, "health_check")
        except IndexerError:
            return False
        return data.get("_meta") is not None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_connected(self) -> httpx.AsyncClient:
        """Return the HTTP client, raising if not connected."""
        if self._client is None:
            msg = "Indexer service not connected. Call connect() first."
            raise IndexerError(msg, status_code=500)
        return self._client

    async def _wait_turn(self) -> None:
        """Sleep so consecutive requests respect ``request_interval``."""
        async with self._throttle:
            interval = self._config.request_interval
            if interval > 0:
                elapsed = time.monotonic() - self._last_request
                if elapsed < interval:
                    await asyncio.sleep(interval - elapsed)
            self._last_request = time.monotonic()

    async def _query(
        self, query: str, variables: dict[str, Any], operation: str
    ) -> dict[str, Any]:
        """POST a GraphQL document and return its ``data`` object."""
        client = self._ensure_connected()
        await self._wait_turn()

        try:
            response = await client.post("/graphql", json={"query": query, "variables": variables})
        except httpx.HTTPError as exc:
            raise IndexerError(f"Indexer {operation} failed: {exc}") from exc

        if response.status_code != 200:
            self._raise_for_status(response, operation)

        body = response.json()
        errors = body.get("errors")
        if errors:
            detail = "; ".join(str(e.get("message", e)) for e in errors)
            msg = f"Indexer {operation} failed: {detail}"
            raise IndexerError(msg)
        return body.get("data") or {}

    def _raise_for_status(self, response: httpx.Response, operation: str) -> None:
        """Raise an IndexerError from a non-2xx response."""
        status = response.status_code
        try:
            body = response.json()
            detail = body.get("detail", body.get("message", response.text))
        except ValueError:
            detail = response.text

        message = f"Indexer {operation} failed ({status}): {detail}"
        raise IndexerError(message, status_code=status)
