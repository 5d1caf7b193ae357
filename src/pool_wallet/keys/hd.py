"""BIP32 HD key derivation on secp256k1 for Ethereum-style accounts.

Implements the private-key half of BIP32, which is all the wallet needs
to turn a BIP39 seed into the account key at ``m/44'/60'/0'/0/0``:
- Master key from seed
- Hardened and normal child derivation
- Public key encoding (compressed / uncompressed)
"""

from __future__ import annotations

import hashlib
import hmac
import struct
from dataclasses import dataclass
from typing import Self

from ecdsa import SECP256k1, SigningKey

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_CURVE = SECP256k1
_CURVE_ORDER = _CURVE.order

# BIP32 seed HMAC key
_MASTER_HMAC_KEY = b"Bitcoin seed"

HARDENED_OFFSET = 0x80000000

# BIP44 path used by Ethereum wallets for the first account
ETHEREUM_DEFAULT_PATH = "m/44'/60'/0'/0/0"


# ---------------------------------------------------------------------------
# ECDSA helpers
# ---------------------------------------------------------------------------


def private_key_to_public_key(privkey_bytes: bytes, *, compressed: bool = True) -> bytes:
    """Derive the public key from a 32-byte private key.

    Args:
        privkey_bytes: 32-byte big-endian scalar.
        compressed: If True, return the 33-byte SEC compressed encoding.

    Returns:
        The public key bytes (33 compressed or 65 uncompressed).
    """
    sk = SigningKey.from_string(privkey_bytes, curve=_CURVE)
    raw = sk.get_verifying_key().to_string()
    if compressed:
        return compress_public_key(raw)
    return b"\x04" + raw


def compress_public_key(raw_pubkey: bytes) -> bytes:
    """Compress a 64-byte (or 65-byte with 0x04 prefix) raw public key to 33 bytes."""
    if len(raw_pubkey) == 65 and raw_pubkey[0] == 0x04:
        raw_pubkey = raw_pubkey[1:]
    if len(raw_pubkey) != 64:
        msg = f"Invalid raw public key length: {len(raw_pubkey)}"
        raise ValueError(msg)
    x = int.from_bytes(raw_pubkey[:32], "big")
    y = int.from_bytes(raw_pubkey[32:], "big")
    prefix = b"\x02" if y % 2 == 0 else b"\x03"
    return prefix + x.to_bytes(32, "big")


# ---------------------------------------------------------------------------
# BIP32 Extended Key
# ---------------------------------------------------------------------------


@dataclass(frozen=True, repr=False)
class ExtendedPrivateKey:
    """A BIP32 extended private key.

    Attributes:
        key: 32-byte private key scalar.
        chain_code: 32-byte chain code.
        depth: Derivation depth (0 for master).
        child_index: Index used in derivation.
    """

    key: bytes
    chain_code: bytes
    depth: int = 0
    child_index: int = 0

    def __repr__(self) -> str:
        return f"ExtendedPrivateKey(depth={self.depth}, index={self.child_index}, key=<redacted>)"

    def public_key(self, *, compressed: bool = True) -> bytes:
        """Return the public key for this node."""
        return private_key_to_public_key(self.key, compressed=compressed)

    def derive_child(self, index: int) -> ExtendedPrivateKey:
        """Derive a child key at the given index.

        Use ``index >= HARDENED_OFFSET`` for hardened derivation.

        Raises:
            ValueError: If the derived key is invalid.
        """
        if index >= HARDENED_OFFSET:
            data = b"\x00" + self.key + struct.pack(">I", index)
        else:
            data = self.public_key() + struct.pack(">I", index)

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        il, ir = hmac_result[:32], hmac_result[32:]

        il_int = int.from_bytes(il, "big")
        if il_int >= _CURVE_ORDER:
            msg = "Derived key is invalid (il >= curve order)"
            raise ValueError(msg)

        key_int = (il_int + int.from_bytes(self.key, "big")) % _CURVE_ORDER
        if key_int == 0:
            msg = "Derived key is invalid (key == 0)"
            raise ValueError(msg)
        return ExtendedPrivateKey(
            key=key_int.to_bytes(32, "big"),
            chain_code=ir,
            depth=self.depth + 1,
            child_index=index,
        )

    def derive_path(self, path: str) -> ExtendedPrivateKey:
        """Derive using a BIP32 path string like ``m/44'/60'/0'/0/0``.

        Apostrophe (') or h indicates hardened derivation.
        """
        node = self
        for part in path.strip().split("/"):
            if part in ("m", "M", ""):
                continue
            hardened = part.endswith(("'", "h", "H"))
            idx = int(part.rstrip("'hH"))
            if hardened:
                idx += HARDENED_OFFSET
            node = node.derive_child(idx)
        return node

    @classmethod
    def from_seed(cls, seed: bytes) -> Self:
        """Create a master private extended key from a BIP32 seed.

        Args:
            seed: 16-64 byte seed (64 from a BIP39 mnemonic).

        Raises:
            ValueError: If seed length is out of range.
        """
        if not 16 <= len(seed) <= 64:
            msg = f"Seed must be 16-64 bytes, got {len(seed)}"
            raise ValueError(msg)
        hmac_result = hmac.new(_MASTER_HMAC_KEY, seed, hashlib.sha512).digest()
        il, ir = hmac_result[:32], hmac_result[32:]
        il_int = int.from_bytes(il, "big")
        if il_int == 0 or il_int >= _CURVE_ORDER:
            msg = "Invalid seed (derived key out of range)"
            raise ValueError(msg)
        return cls(key=il, chain_code=ir)
