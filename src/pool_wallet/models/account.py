"""Account row: the unencrypted index entry plus the encrypted blob.

Index columns (name, method, credential id, public key hash, user salt)
hold no secrets and are readable without a session. ``nonce`` and
``ciphertext`` hold the AES-GCM encrypted JSON document with the account
data, the note caches and their discovery cursors.
"""

from __future__ import annotations

from sqlalchemy import Integer, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from pool_wallet.models.base import Base, TimestampMixin


class AccountRecord(Base, TimestampMixin):
    """One row per local account."""

    __tablename__ = "accounts"

    account_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    name_key: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    auth_method: Mapped[str] = mapped_column(String(16), nullable=False)
    credential_id: Mapped[str | None] = mapped_column(String(512), nullable=True, default=None)
    public_key_hash: Mapped[str | None] = mapped_column(
        String(64), unique=True, index=True, nullable=True, default=None
    )
    user_salt: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    # Encrypted blob
    blob_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    nonce: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True, default=None)
    ciphertext: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True, default=None)

    @property
    def has_blob(self) -> bool:
        """Whether encrypted account data was stored for this account."""
        return self.ciphertext is not None and self.nonce is not None

    def __repr__(self) -> str:
        return f"<AccountRecord name={self.account_name!r} method={self.auth_method}>"
