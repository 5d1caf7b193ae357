"""Read-only contract of the pool's public event log."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from pool_wallet.indexer.models import ActivityPage


class EventSource(Protocol):
    """Paginated, ascending access to pool activities."""

    async def get_activities(
        self,
        pool_id: str,
        *,
        limit: int | None = None,
        after: str | None = None,
        order_direction: str = "asc",
    ) -> ActivityPage: ...

    async def get_latest_cursor(self, pool_id: str) -> str | None: ...
