"""Tests for the key derivation service, credential errors and session hints."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from pool_wallet.auth.credentials import (
    AuthMethodKind,
    CredentialRecord,
    HardwareAuth,
    PasswordAuth,
    auth_method_from_record,
    map_platform_error,
)
from pool_wallet.auth.kdf import (
    KeyDerivationService,
    SymmetricSessionKey,
    normalize_account_name,
    validate_account_name,
)
from pool_wallet.auth.session_info import ResumeAction, SessionInfo
from pool_wallet.errors.wallet_errors import CredentialError, SessionError, ValidationError

# ---------------------------------------------------------------------------
# Account names
# ---------------------------------------------------------------------------


class TestAccountNames:
    def test_normalize(self) -> None:
        assert normalize_account_name("  Alice ") == "alice"

    @pytest.mark.parametrize("name", ["al", "Alice Smith", "bob_2", "x-y"])
    def test_valid(self, name: str) -> None:
        validate_account_name(name)

    @pytest.mark.parametrize("name", ["a", "x" * 31, "bad/name", "emoji🙂"])
    def test_invalid(self, name: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_account_name(name)
        assert exc_info.value.code == "INVALID_ACCOUNT_NAME"


# ---------------------------------------------------------------------------
# Symmetric session key
# ---------------------------------------------------------------------------


class TestSymmetricSessionKey:
    def _key(self) -> SymmetricSessionKey:
        return SymmetricSessionKey(
            b"\x01" * 32, account_name="alice", method=AuthMethodKind.PASSWORD
        )

    def test_length_checked(self) -> None:
        with pytest.raises(ValueError, match="32 bytes"):
            SymmetricSessionKey(b"\x01", account_name="a", method=AuthMethodKind.PASSWORD)

    def test_repr_redacted(self) -> None:
        assert "redacted" in repr(self._key())

    def test_destroy(self) -> None:
        key = self._key()
        key.destroy()
        assert key.is_destroyed
        with pytest.raises(SessionError) as exc_info:
            _ = key.material
        assert exc_info.value.code == "SESSION_NOT_INITIALIZED"

    def test_equality_by_material(self) -> None:
        assert self._key() == self._key()


# ---------------------------------------------------------------------------
# Password derivation
# ---------------------------------------------------------------------------


class TestPasswordDerivation:
    async def test_deterministic(self, kdf: KeyDerivationService) -> None:
        a = await kdf.derive_symmetric_key_from_password("hunter22", "alice")
        b = await kdf.derive_symmetric_key_from_password("hunter22", "alice")
        assert a == b
        assert len(a.material) == 32
        assert a.method == AuthMethodKind.PASSWORD

    async def test_name_is_case_insensitive(self, kdf: KeyDerivationService) -> None:
        a = await kdf.derive_symmetric_key_from_password("hunter22", "Alice")
        b = await kdf.derive_symmetric_key_from_password("hunter22", " alice ")
        assert a == b

    async def test_different_names_differ(self, kdf: KeyDerivationService) -> None:
        a = await kdf.derive_symmetric_key_from_password("hunter22", "alice")
        b = await kdf.derive_symmetric_key_from_password("hunter22", "bob")
        assert a != b

    async def test_different_passwords_differ(self, kdf: KeyDerivationService) -> None:
        a = await kdf.derive_symmetric_key_from_password("hunter22", "alice")
        b = await kdf.derive_symmetric_key_from_password("hunter23", "alice")
        assert a != b

    async def test_user_salt_changes_key(self, kdf: KeyDerivationService) -> None:
        a = await kdf.derive_symmetric_key_from_password("hunter22", "alice")
        b = await kdf.derive_symmetric_key_from_password(
            "hunter22", "alice", user_salt=b"\x07" * 16
        )
        assert a != b

    async def test_empty_password(self, kdf: KeyDerivationService) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await kdf.derive_symmetric_key_from_password("", "alice")
        assert exc_info.value.code == "INVALID_PASSWORD"

    async def test_dispatch_requires_password(self, kdf: KeyDerivationService) -> None:
        with pytest.raises(CredentialError) as exc_info:
            await kdf.derive_symmetric_key(PasswordAuth(), "alice")
        assert exc_info.value.code == "PASSWORD_REQUIRED"

    async def test_dispatch_uses_user_salt(self, kdf: KeyDerivationService) -> None:
        salt = b"\x09" * 16
        direct = await kdf.derive_symmetric_key_from_password("pw", "alice", user_salt=salt)
        via = await kdf.derive_symmetric_key(
            PasswordAuth(user_salt_hex=salt.hex()), "alice", password="pw"
        )
        assert direct == via


# ---------------------------------------------------------------------------
# Hardware derivation
# ---------------------------------------------------------------------------


def _hardware_kdf(app_config, platform) -> KeyDerivationService:
    return KeyDerivationService(app_config.kdf, platform=platform)


class TestHardwareDerivation:
    async def test_create_and_derive(self, app_config, fakes) -> None:
        platform = fakes["platform"]()
        kdf = _hardware_kdf(app_config, platform)
        assert kdf.hardware_available

        credential_id = await kdf.create_hardware_credential("alice", b"handle")
        a = await kdf.derive_symmetric_key_from_hardware_credential("alice", credential_id)
        b = await kdf.derive_symmetric_key(HardwareAuth(credential_id=credential_id), "alice")
        assert a == b
        assert a.method == AuthMethodKind.HARDWARE

    async def test_names_give_unrelated_keys(self, app_config, fakes) -> None:
        kdf = _hardware_kdf(app_config, fakes["platform"]())
        credential_id = await kdf.create_hardware_credential("alice", b"handle")
        a = await kdf.derive_symmetric_key_from_hardware_credential("alice", credential_id)
        b = await kdf.derive_symmetric_key_from_hardware_credential("bob", credential_id)
        assert a != b

    async def test_no_platform(self, app_config) -> None:
        kdf = KeyDerivationService(app_config.kdf)
        assert not kdf.hardware_available
        with pytest.raises(CredentialError) as exc_info:
            await kdf.create_hardware_credential("alice", b"handle")
        assert exc_info.value.code == "HARDWARE_UNSUPPORTED"

    async def test_prf_not_supported(self, app_config, fakes) -> None:
        kdf = _hardware_kdf(app_config, fakes["platform"](prf_enabled=False))
        with pytest.raises(CredentialError) as exc_info:
            await kdf.create_hardware_credential("alice", b"handle")
        assert exc_info.value.code == "HARDWARE_UNSUPPORTED"

    async def test_user_cancel(self, app_config, fakes) -> None:
        platform = fakes["platform"](error=RuntimeError("The operation was cancelled"))
        kdf = _hardware_kdf(app_config, platform)
        with pytest.raises(CredentialError) as exc_info:
            await kdf.create_hardware_credential("alice", b"handle")
        assert exc_info.value.code == "USER_CANCELLED"

    async def test_unknown_credential(self, app_config, fakes) -> None:
        kdf = _hardware_kdf(app_config, fakes["platform"]())
        with pytest.raises(CredentialError) as exc_info:
            await kdf.derive_symmetric_key_from_hardware_credential("alice", "cred-missing")
        assert exc_info.value.code == "CREDENTIAL_NOT_FOUND"

    async def test_empty_credential_id(self, app_config, fakes) -> None:
        kdf = _hardware_kdf(app_config, fakes["platform"]())
        with pytest.raises(CredentialError) as exc_info:
            await kdf.derive_symmetric_key_from_hardware_credential("alice", "")
        assert exc_info.value.code == "CREDENTIAL_NOT_FOUND"


class TestPlatformErrorMapping:
    @pytest.mark.parametrize(
        ("exc", "code"),
        [
            (type("NotAllowedError", (Exception,), {})("x"), "USER_CANCELLED"),
            (RuntimeError("request aborted by user"), "USER_CANCELLED"),
            (RuntimeError("PRF extension unavailable"), "HARDWARE_UNSUPPORTED"),
            (RuntimeError("hmac-secret missing"), "HARDWARE_UNSUPPORTED"),
            (LookupError("unknown credential"), "CREDENTIAL_NOT_FOUND"),
            (OSError("usb glitch"), "HARDWARE_FAILED"),
        ],
    )
    def test_mapping(self, exc: Exception, code: str) -> None:
        assert map_platform_error(exc).code == code


class TestAuthMethodRecord:
    def test_password(self) -> None:
        method = auth_method_from_record("password", credential_id=None, user_salt_hex="ab")
        assert method == PasswordAuth(user_salt_hex="ab")

    def test_hardware(self) -> None:
        method = auth_method_from_record("hardware", credential_id="cred-1")
        assert method == HardwareAuth(credential_id="cred-1")

    def test_hardware_without_id(self) -> None:
        with pytest.raises(CredentialError):
            auth_method_from_record("hardware", credential_id=None)

    def test_credential_record_dict(self) -> None:
        record = CredentialRecord(
            account_name="alice",
            method=AuthMethodKind.HARDWARE,
            created_at=datetime(2026, 1, 1, tzinfo=UTC),
            credential_id="cred-1",
        )
        assert CredentialRecord.from_dict(record.to_dict()) == record


# ---------------------------------------------------------------------------
# Session hints
# ---------------------------------------------------------------------------


class TestSessionInfo:
    def test_expiry(self) -> None:
        now = datetime(2026, 1, 2, tzinfo=UTC)
        info = SessionInfo("alice", AuthMethodKind.PASSWORD, now - timedelta(hours=2))
        assert info.is_expired(3600, now=now)
        assert not info.is_expired(3 * 3600, now=now)

    def test_naive_time_treated_as_utc(self) -> None:
        info = SessionInfo("alice", AuthMethodKind.PASSWORD, datetime(2026, 1, 1))  # noqa: DTZ001
        assert info.is_expired(60, now=datetime(2026, 1, 1, 0, 2, tzinfo=UTC))

    async def test_store_and_restore(self, kdf: KeyDerivationService) -> None:
        info = SessionInfo("alice", AuthMethodKind.PASSWORD, datetime.now(UTC))
        await kdf.store_session_info(info)
        restored = await kdf.restore_session_info()
        assert restored is not None
        assert restored.account_name == "alice"
        assert restored.auth_method == AuthMethodKind.PASSWORD

    async def test_expired_hint_cleared(self, kdf: KeyDerivationService) -> None:
        old = datetime.now(UTC) - timedelta(days=3)
        await kdf.store_session_info(SessionInfo("alice", AuthMethodKind.PASSWORD, old))
        assert await kdf.restore_session_info() is None
        assert (await kdf.resume_auth()).action == ResumeAction.NONE

    async def test_resume_password(self, kdf: KeyDerivationService) -> None:
        await kdf.store_session_info(
            SessionInfo("alice", AuthMethodKind.PASSWORD, datetime.now(UTC))
        )
        state = await kdf.resume_auth()
        assert state.action == ResumeAction.PASSWORD_NEEDED
        assert state.account_name == "alice"

    async def test_resume_hardware_without_platform(self, kdf: KeyDerivationService) -> None:
        await kdf.store_session_info(
            SessionInfo("alice", AuthMethodKind.HARDWARE, datetime.now(UTC), credential_id="c")
        )
        assert (await kdf.resume_auth()).action == ResumeAction.NONE

    async def test_resume_hardware_ready(self, app_config, datastore, fakes) -> None:
        from pool_wallet.store.session_info_repository import SessionInfoStore

        kdf = KeyDerivationService(
            app_config.kdf,
            session_config=app_config.session,
            platform=fakes["platform"](),
            session_repo=SessionInfoStore(datastore),
        )
        await kdf.store_session_info(
            SessionInfo("alice", AuthMethodKind.HARDWARE, datetime.now(UTC), credential_id="c")
        )
        state = await kdf.resume_auth()
        assert state.action == ResumeAction.HARDWARE_READY
        assert state.credential_id == "c"

    async def test_clear(self, kdf: KeyDerivationService) -> None:
        await kdf.store_session_info(
            SessionInfo("alice", AuthMethodKind.PASSWORD, datetime.now(UTC))
        )
        await kdf.clear_session_info()
        assert await kdf.restore_session_info() is None
