"""Tests for datastore abstraction — engines, client and table creation."""

from __future__ import annotations

import pytest
from sqlalchemy import inspect, text

from pool_wallet.config.settings import DatabaseConfig
from pool_wallet.datastore.client import Datastore
from pool_wallet.datastore.engines import create_engine
from pool_wallet.datastore.migrations import SchemaOutdatedError, drop_schema, ensure_schema
from pool_wallet.models import ALL_MODELS, AccountRecord

MEMORY_DSN = "sqlite+aiosqlite:///:memory:"

# ---------------------------------------------------------------------------
# Engine factory
# ---------------------------------------------------------------------------


class TestCreateEngine:
    async def test_create_sqlite_engine(self) -> None:
        engine = create_engine(DatabaseConfig(engine="sqlite", dsn=MEMORY_DSN))
        assert engine is not None
        await engine.dispose()

    async def test_engine_echo_flag(self) -> None:
        engine = create_engine(DatabaseConfig(engine="sqlite", dsn=MEMORY_DSN, debug_sql=True))
        assert engine.echo is True
        await engine.dispose()


# ---------------------------------------------------------------------------
# Datastore client
# ---------------------------------------------------------------------------


async def _table_names(engine) -> set[str]:
    async with engine.connect() as conn:
        return set(await conn.run_sync(lambda c: inspect(c).get_table_names()))


class TestDatastore:
    async def test_open_close(self) -> None:
        ds = Datastore(DatabaseConfig(engine="sqlite", dsn=MEMORY_DSN))
        assert not ds.is_open
        await ds.open()
        assert ds.is_open
        await ds.close()
        assert not ds.is_open

    async def test_engine_before_open_raises(self) -> None:  # noqa: ASYNC910
        ds = Datastore(DatabaseConfig(engine="sqlite", dsn=MEMORY_DSN))
        with pytest.raises(RuntimeError, match="not open"):
            _ = ds.engine

    async def test_session_before_open_raises(self) -> None:  # noqa: ASYNC910
        ds = Datastore(DatabaseConfig(engine="sqlite", dsn=MEMORY_DSN))
        with pytest.raises(RuntimeError, match="not open"):
            ds.session()

    async def test_open_creates_wallet_tables(self) -> None:
        ds = Datastore(DatabaseConfig(engine="sqlite", dsn=MEMORY_DSN))
        assert await ds.open() == ["accounts", "session_info"]
        assert {"accounts", "session_info"} <= await _table_names(ds.engine)
        await ds.close()

    async def test_open_without_migrate(self) -> None:
        ds = Datastore(DatabaseConfig(engine="sqlite", dsn=MEMORY_DSN))
        assert await ds.open(migrate=False) == []
        assert "accounts" not in await _table_names(ds.engine)
        await ds.close()

    async def test_reopen_creates_nothing(self, tmp_path) -> None:
        config = DatabaseConfig(engine="sqlite", dsn=f"sqlite+aiosqlite:///{tmp_path}/w.db")
        first = Datastore(config)
        await first.open()
        await first.close()

        second = Datastore(config)
        assert await second.open() == []
        await second.close()

    async def test_transaction_commits(self, datastore) -> None:
        async with datastore.transaction() as db:
            db.add(AccountRecord(account_name="Alice", name_key="alice", auth_method="password"))
        async with datastore.session() as db:
            row = await db.get(AccountRecord, "Alice")
            assert row is not None
            assert not row.has_blob

    async def test_transaction_rolls_back_on_error(self, datastore) -> None:
        with pytest.raises(LookupError):
            async with datastore.transaction() as db:
                db.add(AccountRecord(account_name="Bob", name_key="bob", auth_method="password"))
                await db.flush()
                raise LookupError
        async with datastore.session() as db:
            assert await db.get(AccountRecord, "Bob") is None

    async def test_ping(self) -> None:
        ds = Datastore(DatabaseConfig(engine="sqlite", dsn=MEMORY_DSN))
        assert not await ds.ping()
        await ds.open()
        assert await ds.ping()
        await ds.close()
        assert not await ds.ping()


# ---------------------------------------------------------------------------
# Schema bootstrap
# ---------------------------------------------------------------------------


class TestMigrations:
    def test_all_models_registered(self) -> None:
        tables = {m.__tablename__ for m in ALL_MODELS}
        assert tables == {"accounts", "session_info"}

    async def test_ensure_schema_idempotent(self) -> None:
        engine = create_engine(DatabaseConfig(engine="sqlite", dsn=MEMORY_DSN))
        assert await ensure_schema(engine) == ["accounts", "session_info"]
        assert await ensure_schema(engine) == []
        await engine.dispose()

    async def test_outdated_table_rejected(self, tmp_path) -> None:
        config = DatabaseConfig(engine="sqlite", dsn=f"sqlite+aiosqlite:///{tmp_path}/old.db")
        engine = create_engine(config)
        async with engine.begin() as conn:
            await conn.execute(text("CREATE TABLE accounts (account_name VARCHAR(64) PRIMARY KEY)"))
        await engine.dispose()

        ds = Datastore(config)
        with pytest.raises(SchemaOutdatedError, match="alembic upgrade head") as exc_info:
            await ds.open()
        assert "ciphertext" in exc_info.value.missing["accounts"]
        assert "session_info" not in exc_info.value.missing
        assert not ds.is_open

    async def test_drop_schema_keeps_foreign_tables(self) -> None:
        engine = create_engine(DatabaseConfig(engine="sqlite", dsn=MEMORY_DSN))
        await ensure_schema(engine)
        async with engine.begin() as conn:
            await conn.execute(text("CREATE TABLE other (id INTEGER PRIMARY KEY)"))

        await drop_schema(engine)
        assert await _table_names(engine) == {"other"}
        await engine.dispose()
