"""Address encoding — Ethereum addresses with EIP-55 checksums.

- Address generation from secp256k1 public keys
- Checksum normalization and validation
"""

from __future__ import annotations

import re

from pool_wallet.utils.crypto import keccak256

_HEX_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


def pubkey_to_address(pubkey: bytes) -> str:
    """Generate the checksummed address of a 65-byte uncompressed public key.

    Args:
        pubkey: 65-byte (0x04-prefixed) or 64-byte raw uncompressed key.

    Returns:
        EIP-55 checksummed ``0x`` address.
    """
    if len(pubkey) == 65 and pubkey[0] == 0x04:
        pubkey = pubkey[1:]
    if len(pubkey) != 64:
        msg = f"Expected an uncompressed public key, got {len(pubkey)} bytes"
        raise ValueError(msg)
    return to_checksum_address("0x" + keccak256(pubkey)[-20:].hex())


def to_checksum_address(address: str) -> str:
    """Apply EIP-55 mixed-case checksum encoding.

    Raises:
        ValueError: If the input is not a 20-byte hex address.
    """
    if not _HEX_ADDRESS.match(address):
        msg = f"Invalid address: {address!r}"
        raise ValueError(msg)
    lower = address[2:].lower()
    digest = keccak256(lower.encode("ascii")).hex()
    out = [
        ch.upper() if ch.isalpha() and int(digest[i], 16) >= 8 else ch
        for i, ch in enumerate(lower)
    ]
    return "0x" + "".join(out)


def validate_address(address: str) -> bool:
    """Check that an address is well formed.

    All-lowercase and all-uppercase hex is accepted as-is; mixed case must
    carry a correct EIP-55 checksum.
    """
    if not isinstance(address, str) or not _HEX_ADDRESS.match(address):
        return False
    body = address[2:]
    if body == body.lower() or body == body.upper():
        return True
    return to_checksum_address(address) == address


def address_to_bytes(address: str) -> bytes:
    """Return the 20 raw bytes of a validated address."""
    if not validate_address(address):
        msg = f"Invalid address: {address!r}"
        raise ValueError(msg)
    return bytes.fromhex(address[2:])
