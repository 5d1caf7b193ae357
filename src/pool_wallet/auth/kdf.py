"""Key derivation service — symmetric storage keys from credentials.

Turns a password (argon2id) or hardware PRF output (HKDF-SHA256) into the
256-bit key that encrypts an account's blob in the account store, and
remembers which method was used last for quick re-authentication.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import re
from collections import defaultdict
from contextlib import AbstractContextManager, nullcontext
from typing import TYPE_CHECKING

from argon2.low_level import Type, hash_secret_raw

from pool_wallet.auth.credentials import (
    AuthMethodKind,
    HardwareAuth,
    PasswordAuth,
    map_platform_error,
)
from pool_wallet.auth.session_info import ResumeAction, ResumeState, SessionInfo
from pool_wallet.errors.definitions import (
    ErrCredentialNotFound,
    ErrHardwareUnsupported,
)
from pool_wallet.errors.wallet_errors import CredentialError, SessionError, ValidationError
from pool_wallet.utils.crypto import hkdf_sha256, sha256

if TYPE_CHECKING:
    from pool_wallet.auth.credentials import AuthMethod, CredentialPlatform
    from pool_wallet.auth.session_info import SessionInfoRepository
    from pool_wallet.config.settings import KDFConfig, SessionConfig
    from pool_wallet.metrics.collector import EngineMetrics

logger = logging.getLogger(__name__)

_ACCOUNT_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9 _-]{2,30}$")
_SUPPORT_CHECK_SUFFIX = "support-check"


def normalize_account_name(account_name: str) -> str:
    """Case- and whitespace-insensitive form used in salts and PRF inputs."""
    return account_name.strip().lower()


def validate_account_name(account_name: str) -> None:
    """Check length and character set of a new account name.

    Raises:
        ValidationError: With code ``INVALID_ACCOUNT_NAME``.
    """
    if not _ACCOUNT_NAME_PATTERN.match(account_name.strip()):
        msg = "account name must be 2-30 characters of letters, digits, spaces, '-' or '_'"
        raise ValidationError(msg, code="INVALID_ACCOUNT_NAME")


class SymmetricSessionKey:
    """In-memory symmetric key for one account session.

    The key material can be wiped with :meth:`destroy`; it never appears
    in ``repr`` output.
    """

    __slots__ = ("_material", "account_name", "method")

    def __init__(self, material: bytes, *, account_name: str, method: AuthMethodKind) -> None:
        if len(material) != 32:
            msg = f"Session key must be 32 bytes, got {len(material)}"
            raise ValueError(msg)
        self._material = bytearray(material)
        self.account_name = account_name
        self.method = method

    @property
    def material(self) -> bytes:
        """Raw key bytes.

        Raises:
            SessionError: If the key was destroyed.
        """
        if not self._material:
            msg = "session key has been destroyed"
            raise SessionError(msg, code="SESSION_NOT_INITIALIZED")
        return bytes(self._material)

    @property
    def is_destroyed(self) -> bool:
        return not self._material

    def destroy(self) -> None:
        """Overwrite and drop the key material."""
        for i in range(len(self._material)):
            self._material[i] = 0
        self._material = bytearray()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SymmetricSessionKey):
            return NotImplemented
        return hmac.compare_digest(bytes(self._material), bytes(other._material))

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        state = "destroyed" if self.is_destroyed else "<redacted>"
        method = self.method.value
        return f"SymmetricSessionKey(account={self.account_name!r}, method={method}, key={state})"


class KeyDerivationService:
    """Derives storage keys from passwords and hardware credentials.

    Usage::

        kdf = KeyDerivationService(config.kdf, platform=platform, session_repo=repo)
        key = await kdf.derive_symmetric_key_from_password("hunter2", "alice")
    """

    def __init__(
        self,
        config: KDFConfig,
        *,
        session_config: SessionConfig | None = None,
        platform: CredentialPlatform | None = None,
        session_repo: SessionInfoRepository | None = None,
        metrics: EngineMetrics | None = None,
    ) -> None:
        self._config = config
        self._metrics = metrics
        self._session_config = session_config
        self._platform = platform
        self._session_repo = session_repo
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def hardware_available(self) -> bool:
        """Whether a hardware credential platform is present."""
        return self._platform is not None and self._platform.is_available()

    # ------------------------------------------------------------------
    # Salts & PRF inputs
    # ------------------------------------------------------------------

    def account_salt(self, account_name: str, user_salt: bytes = b"") -> bytes:
        """Deterministic per-name salt, optionally extended by a public random salt."""
        label = self._config.salt_prefix + normalize_account_name(account_name)
        base = sha256(label.encode("utf-8"))
        return base + user_salt

    def prf_input(self, account_name: str) -> bytes:
        """PRF evaluation input bound to the account name."""
        return (self._config.prf_prefix + normalize_account_name(account_name)).encode("utf-8")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def derive_symmetric_key_from_password(
        self,
        password: str,
        account_name: str,
        *,
        user_salt: bytes = b"",
    ) -> SymmetricSessionKey:
        """Stretch a password into a 256-bit storage key with argon2id.

        Deterministic for the same password, account name and user salt;
        different account names give unrelated keys.

        Args:
            password: User password (must be non-empty).
            account_name: Account the key protects.
            user_salt: Optional public per-account salt.

        Returns:
            The derived :class:`SymmetricSessionKey`.
        """
        if not password:
            msg = "password must not be empty"
            raise ValidationError(msg, code="INVALID_PASSWORD")
        salt = self.account_salt(account_name, user_salt)
        async with self._locks[normalize_account_name(account_name)]:
            with self._track("password"):
                material = await asyncio.to_thread(
                    hash_secret_raw,
                    secret=password.encode("utf-8"),
                    salt=salt,
                    time_cost=self._config.time_cost,
                    memory_cost=self._config.memory_cost,
                    parallelism=self._config.parallelism,
                    hash_len=self._config.hash_len,
                    type=Type.ID,
                )
        logger.debug("Derived password key for account %r", account_name)
        return SymmetricSessionKey(
            material, account_name=account_name, method=AuthMethodKind.PASSWORD
        )

    async def create_hardware_credential(self, account_name: str, user_handle: bytes) -> str:
        """Register a new PRF-capable hardware credential.

        Args:
            account_name: Account the credential will protect.
            user_handle: Opaque user handle stored by the authenticator.

        Returns:
            The new credential id.

        Raises:
            CredentialError: ``HARDWARE_UNSUPPORTED`` if the platform or the
                authenticator lacks PRF, ``USER_CANCELLED`` on dismissal.
        """
        platform = self._require_platform()
        try:
            registration = await platform.create_credential(
                account_name=account_name,
                user_handle=user_handle,
                prf_input=(self._config.prf_prefix + _SUPPORT_CHECK_SUFFIX).encode("utf-8"),
            )
        except CredentialError:
            raise
        except Exception as exc:
            raise map_platform_error(exc) from exc

        if not registration.prf_enabled:
            logger.info("Authenticator for %r does not support PRF", account_name)
            raise ErrHardwareUnsupported
        logger.info("Registered hardware credential for account %r", account_name)
        return registration.credential_id

    async def derive_symmetric_key_from_hardware_credential(
        self,
        account_name: str,
        credential_id: str,
        *,
        user_salt: bytes = b"",
    ) -> SymmetricSessionKey:
        """Run a PRF challenge against the credential and derive a storage key.

        Raises:
            CredentialError: ``CREDENTIAL_NOT_FOUND``, ``USER_CANCELLED`` or
                ``HARDWARE_UNSUPPORTED``.
        """
        if not credential_id:
            raise ErrCredentialNotFound
        platform = self._require_platform()
        async with self._locks[normalize_account_name(account_name)]:
            try:
                with self._track("hardware"):
                    prf_output = await platform.get_prf_output(
                        credential_id=credential_id,
                        prf_input=self.prf_input(account_name),
                    )
            except CredentialError:
                raise
            except Exception as exc:
                raise map_platform_error(exc) from exc

        if not prf_output:
            raise ErrHardwareUnsupported
        material = hkdf_sha256(
            prf_output,
            salt=self.account_salt(account_name, user_salt),
            info=self._config.hkdf_info.encode("utf-8"),
            length=self._config.hash_len,
        )
        return SymmetricSessionKey(
            material, account_name=account_name, method=AuthMethodKind.HARDWARE
        )

    async def derive_symmetric_key(
        self,
        method: AuthMethod,
        account_name: str,
        *,
        password: str | None = None,
    ) -> SymmetricSessionKey:
        """Derive the storage key for *account_name* using its auth method."""
        if isinstance(method, HardwareAuth):
            return await self.derive_symmetric_key_from_hardware_credential(
                account_name, method.credential_id
            )
        if isinstance(method, PasswordAuth):
            if password is None:
                msg = "password required for a password-protected account"
                raise CredentialError(msg, code="PASSWORD_REQUIRED")
            user_salt = bytes.fromhex(method.user_salt_hex) if method.user_salt_hex else b""
            return await self.derive_symmetric_key_from_password(
                password, account_name, user_salt=user_salt
            )
        msg = f"Unsupported auth method: {method!r}"
        raise TypeError(msg)

    # ------------------------------------------------------------------
    # Session info
    # ------------------------------------------------------------------

    async def store_session_info(self, info: SessionInfo) -> None:
        """Remember which method unlocked which account last."""
        if self._session_repo is None:
            return
        await self._session_repo.save(info)

    async def restore_session_info(self) -> SessionInfo | None:
        """Return the last session hint, or ``None`` if missing or expired."""
        if self._session_repo is None:
            return None
        info = await self._session_repo.load()
        if info is None:
            return None
        timeout = self._session_config.timeout_seconds if self._session_config else 24 * 60 * 60
        if info.is_expired(timeout):
            logger.info("Session hint for %r expired", info.account_name)
            await self._session_repo.clear()
            return None
        return info

    async def clear_session_info(self) -> None:
        """Forget the last session hint (sign-out)."""
        if self._session_repo is not None:
            await self._session_repo.clear()

    async def resume_auth(self) -> ResumeState:
        """Decide how the caller can re-authenticate the last account."""
        info = await self.restore_session_info()
        if info is None:
            return ResumeState(action=ResumeAction.NONE)
        if info.auth_method == AuthMethodKind.HARDWARE:
            if not info.credential_id or not self.hardware_available:
                return ResumeState(action=ResumeAction.NONE, account_name=info.account_name)
            return ResumeState(
                action=ResumeAction.HARDWARE_READY,
                account_name=info.account_name,
                credential_id=info.credential_id,
            )
        return ResumeState(action=ResumeAction.PASSWORD_NEEDED, account_name=info.account_name)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_platform(self) -> CredentialPlatform:
        if self._platform is None or not self._platform.is_available():
            raise ErrHardwareUnsupported
        return self._platform

    def _track(self, method: str) -> AbstractContextManager[None]:
        if self._metrics is None:
            return nullcontext()
        return self._metrics.track_key_derivation(method)
