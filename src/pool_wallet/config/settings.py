"""Application settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``POOLWALLET_``, nested via ``__``)
2. YAML config file (``config_path`` or ``POOLWALLET_CONFIG_PATH`` env var)
3. Defaults defined here
"""

from __future__ import annotations

import enum
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class DatabaseEngine(enum.StrEnum):
    """Supported database engines."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class DatabaseConfig(BaseSettings):
    """Database settings for the local account store."""

    model_config = SettingsConfigDict(
        env_prefix="POOLWALLET_DB__",
        case_sensitive=False,
    )

    engine: DatabaseEngine = Field(
        default=DatabaseEngine.SQLITE,
        description="Database backend: sqlite or postgresql",
    )
    dsn: str = Field(
        default="sqlite+aiosqlite:///./pool_wallet.db",
        description="Async database connection string",
    )
    max_idle_connections: int = 5
    max_open_connections: int = 10
    debug_sql: bool = False


class IndexerConfig(BaseSettings):
    """Pool event indexer (GraphQL) settings."""

    model_config = SettingsConfigDict(
        env_prefix="POOLWALLET_INDEXER__",
        case_sensitive=False,
    )

    url: str = "http://localhost:42069"
    auth_token: str = ""
    page_size: int = Field(default=100, ge=1, le=1000)
    timeout: float = 30.0
    request_interval: float = Field(
        default=0.2,
        ge=0.0,
        description="Minimum delay in seconds between two indexer requests",
    )


class PoolConfig(BaseSettings):
    """Privacy pool contract settings."""

    model_config = SettingsConfigDict(
        env_prefix="POOLWALLET_POOL__",
        case_sensitive=False,
    )

    address: str = "0xB68E4f712bd0783fbc6b369409885c2319Db114a"
    chain_id: int = 84532
    asset_symbol: str = "ETH"
    decimals: int = 18
    scope: str = Field(
        default="0",
        description="Pool SCOPE value (decimal) bound into every withdrawal context",
    )


class KDFConfig(BaseSettings):
    """Symmetric key derivation parameters.

    The argon2id costs are a policy choice; tests lower them drastically.
    """

    model_config = SettingsConfigDict(
        env_prefix="POOLWALLET_KDF__",
        case_sensitive=False,
    )

    time_cost: int = Field(default=3, ge=1)
    memory_cost: int = Field(default=65536, ge=8, description="Memory cost in KiB")
    parallelism: int = Field(default=4, ge=1)
    hash_len: int = 32
    salt_prefix: str = "pool-wallet-salt-"
    prf_prefix: str = "pool-wallet-prf:"
    hkdf_info: str = "pool-wallet-kdf-v1"
    user_salt_bytes: int = 16


class WithdrawalConfig(BaseSettings):
    """Withdrawal fee model and prover / relay endpoints."""

    model_config = SettingsConfigDict(
        env_prefix="POOLWALLET_WITHDRAWAL__",
        case_sensitive=False,
    )

    relay_fee_bps: int = Field(default=1000, ge=0, le=10000)
    max_execution_fee: str = Field(
        default="",
        description="Upper bound of the execution fee in ether; empty for no cap",
    )
    processooor: str = "0x0000000000000000000000000000000000000000"
    fee_recipient: str = "0x0000000000000000000000000000000000000000"
    proof_attempts: int = Field(
        default=2,
        ge=1,
        description="Full pipeline restarts allowed after a prover failure",
    )
    prover_url: str = "http://localhost:8080"
    relay_url: str = "http://localhost:8081"
    auth_token: str = ""
    timeout: float = 120.0

    @field_validator("max_execution_fee")
    @classmethod
    def _check_max_fee(cls, value: str) -> str:
        if not value:
            return value
        try:
            parsed = Decimal(value)
        except InvalidOperation as exc:
            msg = f"max_execution_fee is not a decimal: {value!r}"
            raise ValueError(msg) from exc
        if parsed < 0:
            msg = "max_execution_fee must not be negative"
            raise ValueError(msg)
        return value


class SessionConfig(BaseSettings):
    """Re-authentication hint settings."""

    model_config = SettingsConfigDict(
        env_prefix="POOLWALLET_SESSION__",
        case_sensitive=False,
    )

    timeout_seconds: int = 24 * 60 * 60
    environment: str = "default"


class DepositConfig(BaseSettings):
    """Deposit commitment generation settings."""

    model_config = SettingsConfigDict(
        env_prefix="POOLWALLET_DEPOSIT__",
        case_sensitive=False,
    )

    max_collision_attempts: int = Field(default=5, ge=1)


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level wallet core configuration.

    Loads settings from environment variables (``POOLWALLET_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="POOLWALLET_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    debug: bool = False
    version: str = "0.1.0"
    log_level: str = "INFO"
    config_path: str = ""

    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    indexer: IndexerConfig = Field(default_factory=IndexerConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    kdf: KDFConfig = Field(default_factory=KDFConfig)
    withdrawal: WithdrawalConfig = Field(default_factory=WithdrawalConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    deposit: DepositConfig = Field(default_factory=DepositConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _load_yaml(config_path)
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                merged = {**val, **values[key]}
                values[key] = merged
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))
