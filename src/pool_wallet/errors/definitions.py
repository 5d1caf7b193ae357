"""Predefined wallet errors with fixed messages."""

from __future__ import annotations

from pool_wallet.errors.wallet_errors import (
    CredentialError,
    SessionError,
    ValidationError,
    WalletError,
)

# -- Credential ------------------------------------------------------------

ErrHardwareUnsupported = CredentialError(
    "hardware credential does not support secret derivation (PRF)",
    code="HARDWARE_UNSUPPORTED",
    status_code=501,
)
ErrUserCancelled = CredentialError(
    "credential operation cancelled by the user", code="USER_CANCELLED", status_code=499
)
ErrCredentialNotFound = CredentialError(
    "no hardware credential registered for this account",
    code="CREDENTIAL_NOT_FOUND",
    status_code=404,
)
ErrCredentialAlreadyExists = CredentialError(
    "a credential is already registered for this account",
    code="CREDENTIAL_ALREADY_EXISTS",
    status_code=409,
)
ErrHardwareFailed = CredentialError(
    "hardware credential operation failed", code="HARDWARE_FAILED", status_code=500
)

# -- Session ---------------------------------------------------------------

ErrSessionNotInitialized = SessionError(
    "account store session is not initialized", code="SESSION_NOT_INITIALIZED"
)
ErrDecryptionFailed = SessionError(
    "account data could not be decrypted with this credential", code="DECRYPTION_FAILED"
)
ErrAccountNotFound = SessionError(
    "account not found", code="ACCOUNT_NOT_FOUND", status_code=404
)

# -- Validation ------------------------------------------------------------

ErrInvalidAmount = ValidationError("amount must be greater than zero", code="INVALID_AMOUNT")
ErrAmountExceedsBalance = ValidationError(
    "amount exceeds the note balance", code="AMOUNT_EXCEEDS_BALANCE"
)
ErrInvalidRecipient = ValidationError(
    "recipient is not a well-formed address", code="INVALID_RECIPIENT"
)
ErrNoteAlreadySpent = ValidationError(
    "note has already been spent", code="NOTE_ALREADY_SPENT", status_code=409
)
ErrNoteNotFound = ValidationError(
    "note is not in the account's note cache", code="NOTE_NOT_FOUND", status_code=404
)
ErrWithdrawalNotReady = ValidationError(
    "withdrawal is not ready for execution", code="WITHDRAWAL_NOT_READY", status_code=409
)
ErrMissingAccountKey = ValidationError(
    "account key is required to spend a note", code="MISSING_ACCOUNT_KEY"
)
ErrInvalidMnemonic = ValidationError(
    "recovery phrase must be 12 valid BIP39 words", code="INVALID_MNEMONIC"
)

# -- Pipeline --------------------------------------------------------------

ErrOperationCancelled = WalletError(
    "operation cancelled", code="OPERATION_CANCELLED", status_code=499
)
