"""Withdrawal — validation, fee split, proof request and relay submission."""

from pool_wallet.withdrawal.fees import calculate_withdrawal_amounts
from pool_wallet.withdrawal.models import (
    PreparedWithdrawal,
    ProofResponse,
    TransactionEnvelope,
    WithdrawalAmounts,
    WithdrawalRequest,
    WithdrawalStage,
)
from pool_wallet.withdrawal.preparer import WithdrawalPreparer
from pool_wallet.withdrawal.prover import ProverService, RelayService

__all__ = [
    "PreparedWithdrawal",
    "ProofResponse",
    "ProverService",
    "RelayService",
    "TransactionEnvelope",
    "WithdrawalAmounts",
    "WithdrawalPreparer",
    "WithdrawalRequest",
    "WithdrawalStage",
    "calculate_withdrawal_amounts",
]
