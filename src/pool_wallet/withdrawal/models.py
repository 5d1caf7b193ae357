"""Withdrawal data models — request, amounts, proof exchange, prepared withdrawal.

``PreparedWithdrawal`` and ``WithdrawalContext`` are never persisted; they
live for a single attempt and are dropped after execution or failure.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from pool_wallet.utils.units import format_ether

if TYPE_CHECKING:
    from pool_wallet.notes.models import Note


class WithdrawalStage(enum.StrEnum):
    """Pipeline stages of one withdrawal attempt."""

    IDLE = "idle"
    VALIDATING = "validating"
    GENERATING_PROOF = "generating_proof"
    PREPARING_TRANSACTION = "preparing_transaction"
    READY = "ready"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class WithdrawalAttempt:
    """Stages one withdrawal has passed through, oldest first.

    Each call to the preparer gets its own attempt, so concurrent
    withdrawals never share stage state.
    """

    history: list[WithdrawalStage] = field(default_factory=lambda: [WithdrawalStage.IDLE])

    @property
    def stage(self) -> WithdrawalStage:
        return self.history[-1]

    def restart(self) -> None:
        self.history = [WithdrawalStage.IDLE]


@dataclass(frozen=True, repr=False)
class WithdrawalRequest:
    """What the user asked for.

    Attributes:
        note: Note to spend (the head of its chain).
        amount: Amount to withdraw in asset units, e.g. ``"0.4"``.
        recipient: Address that receives ``you_receive``.
        account_key: Account key scalar the note was derived from.
    """

    note: Note
    amount: Decimal | str
    recipient: str
    account_key: int | None = None

    def __repr__(self) -> str:
        return (
            f"WithdrawalRequest(note={self.note.key}, amount={self.amount}, "
            f"recipient={self.recipient})"
        )


@dataclass(frozen=True)
class WithdrawalAmounts:
    """Fee split of a withdrawal, in base units.

    ``execution_fee`` is the maximum the relayer may keep; any unused part
    is refunded after execution and is not counted in ``you_receive``.
    """

    amount: int
    execution_fee: int
    you_receive: int
    relay_fee_bps: int
    decimals: int = 18

    @property
    def display(self) -> dict[str, Decimal]:
        """Amounts converted back to asset units."""
        return {
            "amount": format_ether(self.amount, decimals=self.decimals),
            "executionFee": format_ether(self.execution_fee, decimals=self.decimals),
            "youReceive": format_ether(self.you_receive, decimals=self.decimals),
        }


@dataclass(frozen=True, repr=False)
class WithdrawalContext:
    """Inputs gathered for the proof; holds note secrets and is never logged."""

    processooor: str
    withdrawal_data: bytes
    scope: int
    context: int
    existing_commitment: int
    existing_nullifier: int
    existing_secret: int
    new_nullifier: int
    new_secret: int
    state_tree_leaves: tuple[int, ...]
    asp_root: int
    asp_ipfs_cid: str = ""

    def __repr__(self) -> str:
        return f"WithdrawalContext(context={self.context}, leaves={len(self.state_tree_leaves)})"


@dataclass(frozen=True)
class ProofResponse:
    """Groth16 proof returned by the prover."""

    pi_a: tuple[str, ...]
    pi_b: tuple[tuple[str, ...], ...]
    pi_c: tuple[str, ...]
    public_signals: tuple[str, ...]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProofResponse:
        proof = data.get("proof") or {}
        return cls(
            pi_a=tuple(str(v) for v in proof.get("pi_a", [])),
            pi_b=tuple(tuple(str(v) for v in row) for row in proof.get("pi_b", [])),
            pi_c=tuple(str(v) for v in proof.get("pi_c", [])),
            public_signals=tuple(str(v) for v in data.get("publicSignals", [])),
        )

    def for_contract(self) -> dict[str, Any]:
        """Verifier calldata layout: G2 coordinates swapped, projective z dropped."""
        if len(self.pi_a) < 2 or len(self.pi_b) < 2 or len(self.pi_c) < 2:
            msg = "incomplete proof"
            raise ValueError(msg)
        return {
            "pA": [self.pi_a[0], self.pi_a[1]],
            "pB": [
                [self.pi_b[0][1], self.pi_b[0][0]],
                [self.pi_b[1][1], self.pi_b[1][0]],
            ],
            "pC": [self.pi_c[0], self.pi_c[1]],
            "pubSignals": list(self.public_signals),
        }


@dataclass(frozen=True)
class TransactionEnvelope:
    """Relay payload: everything the relayer needs to submit the withdrawal."""

    to: str
    chain_id: int
    scope: int
    processooor: str
    withdrawal_data: str
    proof: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "to": self.to,
            "chainId": self.chain_id,
            "scope": str(self.scope),
            "withdrawal": {"processooor": self.processooor, "data": self.withdrawal_data},
            "proof": self.proof,
        }


@dataclass(repr=False)
class PreparedWithdrawal:
    """A withdrawal ready to hand to the relayer."""

    source_note: Note
    amount: int
    recipient: str
    amounts: WithdrawalAmounts
    proof: ProofResponse
    envelope: TransactionEnvelope
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    transaction_hash: str | None = None
    attempt: WithdrawalAttempt = field(
        default_factory=lambda: WithdrawalAttempt([WithdrawalStage.READY])
    )

    @property
    def stage(self) -> WithdrawalStage:
        return self.attempt.stage

    @property
    def history(self) -> list[WithdrawalStage]:
        return list(self.attempt.history)

    @property
    def fee_amount(self) -> int:
        return self.amounts.execution_fee

    def __repr__(self) -> str:
        return (
            f"PreparedWithdrawal(id={self.id[:8]}, note={self.source_note.key}, "
            f"amount={self.amount}, stage={self.stage.value})"
        )
