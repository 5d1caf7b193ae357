"""Ether <-> wei conversion on exact decimals."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

WEI_PER_ETHER = 10**18


def parse_ether(value: str | int | Decimal, *, decimals: int = 18) -> int:
    """Convert a user-facing amount to its integer base-unit value.

    Args:
        value: Amount such as ``"0.4"`` or ``Decimal("1")``.
        decimals: Asset decimals.

    Returns:
        Amount in base units (wei for ETH).

    Raises:
        ValueError: If the value is not a finite decimal or has more
            fractional digits than the asset supports.
    """
    try:
        amount = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except InvalidOperation as exc:
        msg = f"Invalid amount: {value!r}"
        raise ValueError(msg) from exc
    if not amount.is_finite():
        msg = f"Invalid amount: {value!r}"
        raise ValueError(msg)
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        msg = f"Amount {value!r} has more than {decimals} decimal places"
        raise ValueError(msg)
    return int(scaled)


def format_ether(wei: int, *, decimals: int = 18) -> Decimal:
    """Convert base units back to a normalized decimal amount."""
    result = Decimal(wei).scaleb(-decimals)
    if result == result.to_integral_value():
        return result.quantize(Decimal(1))
    return result.normalize()
