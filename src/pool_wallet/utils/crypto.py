"""Cryptographic helpers — hashing, HKDF, field reduction."""

from __future__ import annotations

import hashlib

from Crypto.Hash import keccak
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

# BN254 scalar field (SNARK scalar field)
FIELD_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617


def sha256(data: bytes) -> bytes:
    """Single SHA-256 hash."""
    return hashlib.sha256(data).digest()


def sha256_hex(text: str) -> str:
    """SHA-256 of a UTF-8 string, as lowercase hex."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def keccak256(data: bytes) -> bytes:
    """Ethereum Keccak-256 (pre-standard SHA-3 padding)."""
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def mod_field(value: int) -> int:
    """Reduce an integer into the scalar field."""
    return value % FIELD_MODULUS


def field_from_keccak(data: bytes) -> int:
    """Map arbitrary bytes to a field element via Keccak-256."""
    return mod_field(int.from_bytes(keccak256(data), "big"))


def hkdf_sha256(ikm: bytes, *, salt: bytes, info: bytes, length: int = 32) -> bytes:
    """HKDF-SHA256 extract-and-expand."""
    return HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        info=info,
    ).derive(ikm)
