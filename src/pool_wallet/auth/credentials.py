"""Authentication methods and the hardware credential platform contract.

An account is protected either by a password or by a hardware-backed
credential that supports the PRF (hmac-secret) extension. The choice is
made once at account creation and carried around as an ``AuthMethod``
value; derivation code dispatches on its type.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, Self

from pool_wallet.errors.definitions import (
    ErrCredentialNotFound,
    ErrHardwareFailed,
    ErrHardwareUnsupported,
    ErrUserCancelled,
)

if TYPE_CHECKING:
    from pool_wallet.errors.wallet_errors import CredentialError


class AuthMethodKind(enum.StrEnum):
    """Persisted discriminator of an ``AuthMethod``."""

    PASSWORD = "password"
    HARDWARE = "hardware"


@dataclass(frozen=True)
class PasswordAuth:
    """Password-protected account.

    Attributes:
        user_salt_hex: Public per-account salt mixed into the KDF salt.
    """

    user_salt_hex: str = ""

    @property
    def kind(self) -> AuthMethodKind:
        return AuthMethodKind.PASSWORD


@dataclass(frozen=True)
class HardwareAuth:
    """Account protected by a PRF-capable hardware credential."""

    credential_id: str

    @property
    def kind(self) -> AuthMethodKind:
        return AuthMethodKind.HARDWARE


AuthMethod = PasswordAuth | HardwareAuth


def auth_method_from_record(
    kind: str, *, credential_id: str | None, user_salt_hex: str = ""
) -> AuthMethod:
    """Rebuild an ``AuthMethod`` from its persisted columns."""
    if AuthMethodKind(kind) == AuthMethodKind.HARDWARE:
        if not credential_id:
            raise ErrCredentialNotFound
        return HardwareAuth(credential_id=credential_id)
    return PasswordAuth(user_salt_hex=user_salt_hex)


# ---------------------------------------------------------------------------
# Persisted credential metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CredentialRecord:
    """Non-secret binding of an account name to its authentication method."""

    account_name: str
    method: AuthMethodKind
    created_at: datetime
    credential_id: str | None = None
    public_key_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict."""
        return {
            "accountName": self.account_name,
            "method": self.method.value,
            "credentialId": self.credential_id,
            "publicKeyHash": self.public_key_hash,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create from a plain dict."""
        return cls(
            account_name=data["accountName"],
            method=AuthMethodKind(data["method"]),
            credential_id=data.get("credentialId"),
            public_key_hash=data.get("publicKeyHash"),
            created_at=datetime.fromisoformat(data["createdAt"]),
        )


# ---------------------------------------------------------------------------
# Hardware platform contract
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CredentialRegistration:
    """Result of registering a new hardware credential.

    Attributes:
        credential_id: Platform credential identifier (base64url).
        prf_enabled: Whether the authenticator reported PRF support.
        prf_output: PRF result for the support-check input, when returned at creation.
    """

    credential_id: str
    prf_enabled: bool = False
    prf_output: bytes | None = None


class CredentialPlatform(Protocol):
    """Challenge/response primitive of the hardware credential platform.

    Implementations raise their own exceptions for user dismissal or
    authenticator errors; :func:`map_platform_error` turns them into
    ``CredentialError`` values.
    """

    def is_available(self) -> bool: ...

    async def create_credential(
        self,
        *,
        account_name: str,
        user_handle: bytes,
        prf_input: bytes,
    ) -> CredentialRegistration: ...

    async def get_prf_output(self, *, credential_id: str, prf_input: bytes) -> bytes | None: ...


_CANCEL_NAMES = ("AbortError", "NotAllowedError")
_CANCEL_PATTERN = re.compile(r"cancel|not allowed|aborted|denied", re.IGNORECASE)
_PRF_PATTERN = re.compile(r"prf|hmac-secret", re.IGNORECASE)
_NOT_FOUND_PATTERN = re.compile(r"not found|unknown credential|no credential", re.IGNORECASE)


def map_platform_error(exc: BaseException) -> CredentialError:
    """Classify a platform exception as a credential error.

    Cancel-like failures map to ``USER_CANCELLED``, PRF / hmac-secret
    failures to ``HARDWARE_UNSUPPORTED``, unknown credentials to
    ``CREDENTIAL_NOT_FOUND``; anything else is ``HARDWARE_FAILED``.
    """
    name = type(exc).__name__
    text = str(exc)
    if name in _CANCEL_NAMES or _CANCEL_PATTERN.search(text):
        return ErrUserCancelled
    if _PRF_PATTERN.search(text):
        return ErrHardwareUnsupported
    if _NOT_FOUND_PATTERN.search(text):
        return ErrCredentialNotFound
    return ErrHardwareFailed
