"""ABI encoding of the withdrawal data bound into the proof context.

Only the static layouts the pool contract needs are supported:

    data    = abi.encode(address recipient, address feeRecipient, uint256 feeBps)
    context = keccak(abi.encode((address processooor, bytes data), uint256 scope)) mod F
"""

from __future__ import annotations

from pool_wallet.keys.address import address_to_bytes
from pool_wallet.utils.crypto import field_from_keccak

WORD = 32


def encode_uint(value: int) -> bytes:
    if value < 0 or value >= 1 << 256:
        msg = f"uint256 out of range: {value}"
        raise ValueError(msg)
    return value.to_bytes(WORD, "big")


def encode_address(address: str) -> bytes:
    return address_to_bytes(address).rjust(WORD, b"\x00")


def encode_bytes(data: bytes) -> bytes:
    """Length word followed by the data right-padded to a word boundary."""
    padding = (-len(data)) % WORD
    return encode_uint(len(data)) + data + b"\x00" * padding


def encode_withdrawal_data(recipient: str, fee_recipient: str, relay_fee_bps: int) -> bytes:
    return encode_address(recipient) + encode_address(fee_recipient) + encode_uint(relay_fee_bps)


def encode_withdrawal(processooor: str, data: bytes, scope: int) -> bytes:
    """``abi.encode(Withdrawal(processooor, data), scope)``."""
    # head: offset of the dynamic tuple, then scope
    head = encode_uint(2 * WORD) + encode_uint(scope)
    # tuple: processooor, offset of data inside the tuple, data
    tail = encode_address(processooor) + encode_uint(2 * WORD) + encode_bytes(data)
    return head + tail


def withdrawal_context(processooor: str, data: bytes, scope: int) -> int:
    """Context field element committing the proof to this withdrawal."""
    return field_from_keccak(encode_withdrawal(processooor, data, scope))
