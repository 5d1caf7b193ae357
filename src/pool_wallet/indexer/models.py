"""Indexer data models — Activity, ActivityPage, state tree leaves, ASP root.

Data classes representing the pool indexer's GraphQL objects. Big
integers arrive as decimal strings and are parsed to ``int``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


def _int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, str) and value.lower().startswith("0x"):
        return int(value, 16)
    return int(value)


def _opt_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return _int(value)


# ---------------------------------------------------------------------------
# Activity
# ---------------------------------------------------------------------------


class ActivityType(enum.StrEnum):
    """Kinds of pool events."""

    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    RAGEQUIT = "RAGEQUIT"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_string(cls, value: str) -> ActivityType:
        """Parse a type string, returning UNKNOWN for unrecognised values."""
        try:
            return cls(value.upper())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class Activity:
    """A deposit / withdrawal event in the pool's public log.

    Attributes:
        id: Indexer id of the event.
        type: DEPOSIT, WITHDRAWAL or RAGEQUIT.
        pool_id: Pool contract address.
        amount: Value moved, in base units.
        label: Deposit label (deposits only).
        precommitment_hash: Precommitment published by a deposit.
        spent_nullifier: Nullifier hash revealed by a withdrawal.
        new_commitment: Change commitment created by a withdrawal.
        fee_amount: Relay fee charged by a withdrawal.
    """

    id: str
    type: ActivityType
    pool_id: str = ""
    amount: int = 0
    label: str | None = None
    precommitment_hash: int | None = None
    spent_nullifier: int | None = None
    new_commitment: int | None = None
    fee_amount: int = 0
    block_number: int = 0
    timestamp: int = 0
    transaction_hash: str = ""

    @property
    def is_deposit(self) -> bool:
        return self.type == ActivityType.DEPOSIT

    @property
    def is_withdrawal(self) -> bool:
        return self.type == ActivityType.WITHDRAWAL

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Activity:
        """Create from an indexer JSON item."""
        label = data.get("label")
        return cls(
            id=str(data.get("id", "")),
            type=ActivityType.from_string(str(data.get("type", ""))),
            pool_id=data.get("poolId", ""),
            amount=_int(data.get("amount")),
            label=str(label) if label is not None else None,
            precommitment_hash=_opt_int(data.get("precommitmentHash")),
            spent_nullifier=_opt_int(data.get("spentNullifier")),
            new_commitment=_opt_int(data.get("newCommitment")),
            fee_amount=_int(data.get("feeAmount")),
            block_number=_int(data.get("blockNumber")),
            timestamp=_int(data.get("timestamp")),
            transaction_hash=data.get("transactionHash") or "",
        )


@dataclass
class ActivityPage:
    """One page of activities plus pagination info."""

    items: list[Activity] = field(default_factory=list)
    has_next_page: bool = False
    start_cursor: str | None = None
    end_cursor: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivityPage:
        """Create from the ``activitys`` connection object."""
        page_info = data.get("pageInfo") or {}
        return cls(
            items=[Activity.from_dict(i) for i in data.get("items") or []],
            has_next_page=bool(page_info.get("hasNextPage", False)),
            start_cursor=page_info.get("startCursor"),
            end_cursor=page_info.get("endCursor"),
        )


# ---------------------------------------------------------------------------
# State tree & ASP
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StateTreeLeaf:
    """A commitment leaf of the pool's state tree."""

    leaf_index: int
    leaf_value: int
    tree_root: int = 0
    tree_size: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StateTreeLeaf:
        return cls(
            leaf_index=_int(data.get("leafIndex")),
            leaf_value=_int(data.get("leafValue")),
            tree_root=_int(data.get("treeRoot")),
            tree_size=_int(data.get("treeSize")),
        )


@dataclass(frozen=True)
class AspRoot:
    """Latest root of the approved set of participants."""

    root: int
    ipfs_cid: str = ""
    timestamp: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AspRoot:
        return cls(
            root=_int(data.get("root")),
            ipfs_cid=data.get("ipfsCID") or "",
            timestamp=_int(data.get("timestamp")),
        )
