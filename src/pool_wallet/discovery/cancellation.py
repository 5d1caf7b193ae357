"""Cooperative cancellation token."""

from __future__ import annotations

import logging

from pool_wallet.errors.definitions import ErrOperationCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Flag checked by long-running operations at safe points.

    Discovery checks it between pages; the withdrawal pipeline between
    stages. Cancelling never interrupts an operation mid-step.
    """

    __slots__ = ("_cancelled", "_reason")

    def __init__(self) -> None:
        self._cancelled = False
        self._reason = ""

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "") -> None:
        """Request cancellation (idempotent)."""
        if not self._cancelled:
            self._cancelled = True
            self._reason = reason
            logger.debug("Cancellation requested: %s", reason or "no reason given")

    def raise_if_cancelled(self) -> None:
        """Raise ``OPERATION_CANCELLED`` if cancellation was requested."""
        if self._cancelled:
            raise ErrOperationCancelled
