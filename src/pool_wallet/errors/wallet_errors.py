"""WalletError and the per-component error taxonomy."""

from __future__ import annotations


class WalletError(Exception):
    """Base error for all wallet core operations.

    Attributes:
        message: Human-readable error description.
        status_code: Suggested HTTP-style status code for outer surfaces.
        code: Machine-readable error code string.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        code: str = "WALLET_ERROR",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class CredentialError(WalletError):
    """Password / hardware credential failure (unsupported, cancelled, not found, exists)."""

    def __init__(self, message: str, *, code: str, status_code: int = 401) -> None:
        super().__init__(message, status_code=status_code, code=code)


class SessionError(WalletError):
    """Account store session failure (not initialized, decryption failed, not found)."""

    def __init__(self, message: str, *, code: str, status_code: int = 403) -> None:
        super().__init__(message, status_code=status_code, code=code)


class ValidationError(WalletError):
    """Rejected user input: bad amount, bad recipient, stale note."""

    def __init__(self, message: str, *, code: str, status_code: int = 400) -> None:
        super().__init__(message, status_code=status_code, code=code)


class DiscoveryError(WalletError):
    """Note discovery stopped on a network or event log failure.

    The persisted cursor is left at the last fully processed page, so the
    caller may simply run discovery again.

    Attributes:
        cursor: Last persisted event cursor (``None`` if nothing was scanned).
        pages_processed: Pages merged into the cache before the failure.
    """

    resumable = True

    def __init__(
        self,
        message: str,
        *,
        cursor: str | None = None,
        pages_processed: int = 0,
        code: str = "DISCOVERY_FAILED",
        status_code: int = 502,
    ) -> None:
        super().__init__(message, status_code=status_code, code=code)
        self.cursor = cursor
        self.pages_processed = pages_processed


class ProverError(WalletError):
    """Opaque failure from the proving or relaying collaborator.

    Not resumable: the withdrawal pipeline restarts from validation.
    """

    resumable = False

    def __init__(
        self, message: str, *, code: str = "PROVER_FAILED", status_code: int = 502
    ) -> None:
        super().__init__(message, status_code=status_code, code=code)
