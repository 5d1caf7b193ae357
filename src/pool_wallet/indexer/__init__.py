"""Indexer — read-only GraphQL access to the pool's public event log."""

from pool_wallet.indexer.models import (
    Activity,
    ActivityPage,
    ActivityType,
    AspRoot,
    StateTreeLeaf,
)
from pool_wallet.indexer.service import IndexerService
from pool_wallet.indexer.source import EventSource

__all__ = [
    "Activity",
    "ActivityPage",
    "ActivityType",
    "AspRoot",
    "EventSource",
    "IndexerService",
    "StateTreeLeaf",
]
