"""Account data kept inside the encrypted blob."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Self

from pool_wallet.keys.account import AccountKeys


@dataclass(frozen=True, repr=False)
class AccountData:
    """Secret account material plus creation metadata."""

    account_name: str
    keys: AccountKeys
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __repr__(self) -> str:
        return f"AccountData(account_name={self.account_name!r}, keys={self.keys!r})"

    @property
    def public_key(self) -> str:
        return self.keys.public_key

    def to_dict(self) -> dict[str, Any]:
        return {
            "accountName": self.account_name,
            "keys": self.keys.to_dict(),
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            account_name=data["accountName"],
            keys=AccountKeys.from_dict(data["keys"]),
            created_at=datetime.fromisoformat(data["createdAt"]),
        )
