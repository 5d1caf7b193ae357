"""Relay fee model."""

from __future__ import annotations

from pool_wallet.withdrawal.models import WithdrawalAmounts

BPS_DENOMINATOR = 10_000


def calculate_withdrawal_amounts(
    amount: int,
    *,
    relay_fee_bps: int,
    max_execution_fee: int | None = None,
    decimals: int = 18,
) -> WithdrawalAmounts:
    """Split a withdrawal into execution fee and recipient amount.

    The fee is ``amount * relay_fee_bps / 10000`` rounded down, capped at
    *max_execution_fee* when given.

    Args:
        amount: Amount withdrawn from the note, in base units.
        relay_fee_bps: Relay fee in basis points.
        max_execution_fee: Optional upper bound of the fee, in base units.
        decimals: Asset decimals, used for display.

    Raises:
        ValueError: On a negative amount or a fee rate outside 0..10000.
    """
    if amount < 0:
        msg = "amount must not be negative"
        raise ValueError(msg)
    if not 0 <= relay_fee_bps <= BPS_DENOMINATOR:
        msg = f"relay_fee_bps out of range: {relay_fee_bps}"
        raise ValueError(msg)

    fee = amount * relay_fee_bps // BPS_DENOMINATOR
    if max_execution_fee is not None:
        fee = min(fee, max_execution_fee)
    return WithdrawalAmounts(
        amount=amount,
        execution_fee=fee,
        you_receive=amount - fee,
        relay_fee_bps=relay_fee_bps,
        decimals=decimals,
    )
