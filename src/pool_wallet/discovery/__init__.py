"""Discovery — reconstruct an account's note chains from pool activity."""

from pool_wallet.discovery.cancellation import CancellationToken
from pool_wallet.discovery.coordinator import DiscoveryCoordinator
from pool_wallet.discovery.engine import NoteDiscoveryEngine
from pool_wallet.discovery.progress import DiscoveryProgress, DiscoveryResult

__all__ = [
    "CancellationToken",
    "DiscoveryCoordinator",
    "DiscoveryProgress",
    "DiscoveryResult",
    "NoteDiscoveryEngine",
]
