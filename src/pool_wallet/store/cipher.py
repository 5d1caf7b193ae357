"""AES-256-GCM envelope for the per-account JSON document."""

from __future__ import annotations

import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from pool_wallet.errors.definitions import ErrDecryptionFailed

NONCE_SIZE = 12


def encrypt_document(
    key: bytes, document: dict[str, Any], *, associated_data: bytes
) -> tuple[bytes, bytes]:
    """Encrypt a JSON-serializable document.

    Returns:
        ``(nonce, ciphertext)``; a fresh random nonce is used per call.
    """
    plaintext = json.dumps(document, separators=(",", ":"), sort_keys=True).encode("utf-8")
    nonce = os.urandom(NONCE_SIZE)
    return nonce, AESGCM(key).encrypt(nonce, plaintext, associated_data)


def decrypt_document(
    key: bytes, nonce: bytes, ciphertext: bytes, *, associated_data: bytes
) -> dict[str, Any]:
    """Decrypt and parse a document written by :func:`encrypt_document`.

    Raises:
        SessionError: ``DECRYPTION_FAILED`` on a wrong key or tampered blob.
    """
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, associated_data)
    except InvalidTag as exc:
        raise ErrDecryptionFailed from exc
    data = json.loads(plaintext.decode("utf-8"))
    if not isinstance(data, dict):
        raise ErrDecryptionFailed
    return data
