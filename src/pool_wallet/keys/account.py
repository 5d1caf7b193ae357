"""Account key derivation from a 12-word recovery phrase.

Recovery phrase (BIP39) -> seed -> BIP32 node at ``m/44'/60'/0'/0/0`` ->
secp256k1 key pair and address. The pool's *account key* is the private
key reduced into the proving field.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Self

from mnemonic import Mnemonic

from pool_wallet.errors.definitions import ErrInvalidMnemonic
from pool_wallet.keys.address import pubkey_to_address
from pool_wallet.keys.hd import ETHEREUM_DEFAULT_PATH, ExtendedPrivateKey
from pool_wallet.utils.crypto import mod_field, sha256_hex

logger = logging.getLogger(__name__)

MNEMONIC_WORD_COUNT = 12
_ENTROPY_BYTES = 16

_wordlist = Mnemonic("english")


@dataclass(frozen=True, repr=False)
class AccountKeys:
    """Keys derived once from a recovery phrase.

    Attributes:
        public_key: ``0x04``-prefixed uncompressed public key, hex.
        private_key: ``0x``-prefixed 32-byte private key, hex.
        mnemonic: The 12 recovery words.
        derived_address: EIP-55 checksummed address of the key pair.
    """

    public_key: str
    private_key: str
    mnemonic: tuple[str, ...] = field(default=())
    derived_address: str = ""

    def __repr__(self) -> str:
        return f"AccountKeys(public_key={self.public_key[:10]}..., address={self.derived_address})"

    @property
    def account_key(self) -> int:
        """Private key as a field element, the input of note derivation."""
        return parse_account_key(self.private_key)

    @property
    def public_key_hash(self) -> str:
        """Stable non-secret identifier of the account."""
        return public_key_hash(self.public_key)

    @property
    def phrase(self) -> str:
        """Recovery words joined by single spaces."""
        return " ".join(self.mnemonic)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the encrypted account blob."""
        return {
            "publicKey": self.public_key,
            "privateKey": self.private_key,
            "mnemonic": list(self.mnemonic),
            "derivedAddress": self.derived_address,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create from a decrypted account blob."""
        return cls(
            public_key=data["publicKey"],
            private_key=data["privateKey"],
            mnemonic=tuple(data.get("mnemonic", ())),
            derived_address=data.get("derivedAddress", ""),
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize_mnemonic(phrase: str | list[str] | tuple[str, ...]) -> tuple[str, ...]:
    """Split user input into lowercase words, tolerating stray whitespace."""
    if isinstance(phrase, str):
        words = phrase.strip().lower().split()
    else:
        words = [w.strip().lower() for w in phrase if w.strip()]
    return tuple(words)


def validate_mnemonic(phrase: str | list[str] | tuple[str, ...]) -> bool:
    """Check word count and BIP39 checksum."""
    words = normalize_mnemonic(phrase)
    if len(words) != MNEMONIC_WORD_COUNT:
        return False
    return _wordlist.check(" ".join(words))


def generate_mnemonic(entropy: bytes | None = None) -> tuple[str, ...]:
    """Create a new 12-word phrase from 128 bits of CSPRNG entropy."""
    if entropy is None:
        entropy = secrets.token_bytes(_ENTROPY_BYTES)
    if len(entropy) != _ENTROPY_BYTES:
        msg = f"Entropy must be {_ENTROPY_BYTES} bytes, got {len(entropy)}"
        raise ValueError(msg)
    return tuple(_wordlist.to_mnemonic(entropy).split())


def derive_account_keys(
    phrase: str | list[str] | tuple[str, ...] | None = None,
    *,
    path: str = ETHEREUM_DEFAULT_PATH,
) -> AccountKeys:
    """Derive account keys from a recovery phrase, or from fresh entropy.

    Deterministic for a given phrase: restoring an exported phrase yields
    identical keys.

    Args:
        phrase: 12-word recovery phrase; ``None`` generates a new one.
        path: BIP32 derivation path.

    Returns:
        The derived :class:`AccountKeys`.

    Raises:
        ValidationError: If the phrase is not 12 valid BIP39 words.
    """
    words = generate_mnemonic() if phrase is None else normalize_mnemonic(phrase)
    if not validate_mnemonic(words):
        raise ErrInvalidMnemonic

    seed = Mnemonic.to_seed(" ".join(words))
    node = ExtendedPrivateKey.from_seed(seed).derive_path(path)
    uncompressed = node.public_key(compressed=False)

    keys = AccountKeys(
        public_key="0x" + uncompressed.hex(),
        private_key="0x" + node.key.hex(),
        mnemonic=words,
        derived_address=pubkey_to_address(uncompressed),
    )
    logger.debug("Derived account keys for %s", keys.derived_address)
    return keys


def generate_account_keys() -> AccountKeys:
    """Create a brand-new account."""
    return derive_account_keys(None)


def parse_account_key(value: str | int) -> int:
    """Parse a hex / decimal key and reduce it into the proving field."""
    if isinstance(value, int):
        return mod_field(value)
    text = value.strip()
    if text.lower().startswith("0x"):
        return mod_field(int(text, 16))
    return mod_field(int(text))


def public_key_hash(public_key: str) -> str:
    """SHA-256 (hex) of the lowercased public key string."""
    return sha256_hex(public_key.lower())
