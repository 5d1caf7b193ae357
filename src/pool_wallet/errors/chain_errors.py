"""Indexer & relay errors raised by the HTTP collaborators."""

from __future__ import annotations

from pool_wallet.errors.wallet_errors import ProverError, WalletError


class IndexerError(WalletError):
    """Error from the pool event indexer (HTTP or GraphQL level)."""

    def __init__(self, message: str, *, status_code: int = 502) -> None:
        super().__init__(message, status_code=status_code, code="INDEXER_ERROR")


class RelayError(ProverError):
    """Error from the relayer while submitting a prepared withdrawal."""

    def __init__(self, message: str, *, status_code: int = 502) -> None:
        super().__init__(message, status_code=status_code, code="RELAY_FAILED")
