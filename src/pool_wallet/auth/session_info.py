"""Last-used authentication hint for fast re-authentication.

Only *which* method and its public identifiers are remembered; the
derived key never is.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol, Self

from pool_wallet.auth.credentials import AuthMethodKind


@dataclass(frozen=True)
class SessionInfo:
    """Non-secret record of the last successful unlock."""

    account_name: str
    auth_method: AuthMethodKind
    last_auth_time: datetime
    environment: str = "default"
    credential_id: str | None = None

    def is_expired(self, timeout_seconds: int, *, now: datetime | None = None) -> bool:
        """Whether the hint is older than *timeout_seconds*."""
        now = now or datetime.now(UTC)
        last = self.last_auth_time
        if last.tzinfo is None:
            last = last.replace(tzinfo=UTC)
        return (now - last).total_seconds() > timeout_seconds

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict."""
        return {
            "accountName": self.account_name,
            "authMethod": self.auth_method.value,
            "lastAuthTime": self.last_auth_time.isoformat(),
            "environment": self.environment,
            "credentialId": self.credential_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create from a plain dict."""
        return cls(
            account_name=data["accountName"],
            auth_method=AuthMethodKind(data["authMethod"]),
            last_auth_time=datetime.fromisoformat(data["lastAuthTime"]),
            environment=data.get("environment", "default"),
            credential_id=data.get("credentialId"),
        )


class ResumeAction(enum.StrEnum):
    """What the caller should do to re-authenticate."""

    HARDWARE_READY = "hardware-ready"
    PASSWORD_NEEDED = "password-needed"
    NONE = "none"


@dataclass(frozen=True)
class ResumeState:
    """Outcome of :meth:`KeyDerivationService.resume_auth`."""

    action: ResumeAction
    account_name: str | None = None
    credential_id: str | None = None


class SessionInfoRepository(Protocol):
    """Persistence for the single last-used ``SessionInfo`` hint."""

    async def save(self, info: SessionInfo) -> None: ...
    async def load(self) -> SessionInfo | None: ...
    async def clear(self) -> None: ...
