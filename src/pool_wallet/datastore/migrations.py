"""Wallet schema bootstrap — create missing tables, detect drift.

A fresh install gets its tables created on first open. An existing database
whose ``accounts`` or ``session_info`` table lacks a mapped column was written
by an older release and has to go through ``alembic upgrade head`` first;
opening it would otherwise fail on the first encrypted-blob read.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import inspect

from pool_wallet.models import ALL_MODELS

if TYPE_CHECKING:
    from sqlalchemy import Connection
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


class SchemaOutdatedError(RuntimeError):
    """An existing wallet table is missing columns the models expect."""

    def __init__(self, missing: dict[str, list[str]]) -> None:
        self.missing = missing
        detail = "; ".join(f"{table}: {', '.join(cols)}" for table, cols in sorted(missing.items()))
        super().__init__(f"wallet schema is outdated ({detail}), run 'alembic upgrade head'")


def _missing_columns(conn: Connection) -> dict[str, list[str]]:
    inspector = inspect(conn)
    existing = set(inspector.get_table_names())
    missing: dict[str, list[str]] = {}
    for model in ALL_MODELS:
        table = model.__table__
        if table.name not in existing:
            continue
        present = {col["name"] for col in inspector.get_columns(table.name)}
        absent = [col.name for col in table.columns if col.name not in present]
        if absent:
            missing[table.name] = absent
    return missing


def _create_missing(conn: Connection) -> list[str]:
    existing = set(inspect(conn).get_table_names())
    tables = [m.__table__ for m in ALL_MODELS if m.__tablename__ not in existing]
    if tables:
        tables[0].metadata.create_all(conn, tables=tables)
    return [t.name for t in tables]


async def ensure_schema(engine: AsyncEngine) -> list[str]:
    """Create absent wallet tables and verify the ones already present.

    Args:
        engine: The async SQLAlchemy engine backing the account store.

    Returns:
        Names of the tables created by this call (empty when none were missing).

    Raises:
        SchemaOutdatedError: If an existing table lacks mapped columns.
    """
    async with engine.begin() as conn:
        missing = await conn.run_sync(_missing_columns)
        if missing:
            raise SchemaOutdatedError(missing)
        created = await conn.run_sync(_create_missing)
    if created:
        logger.info("Created wallet tables: %s", ", ".join(created))
    return created


async def drop_schema(engine: AsyncEngine) -> None:
    """Drop the wallet tables, leaving any foreign tables in the database alone."""
    async with engine.begin() as conn:
        await conn.run_sync(
            lambda sync_conn: ALL_MODELS[0].metadata.drop_all(
                sync_conn, tables=[m.__table__ for m in ALL_MODELS]
            )
        )
