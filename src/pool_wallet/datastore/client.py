"""Account datastore — engine lifecycle and transactions for the local account rows.

The store only ever holds two tables (``accounts`` and ``session_info``), so
opening the datastore also brings the wallet schema up to date. Every
encrypted-blob rewrite goes through :meth:`Datastore.transaction` so the row
read and the row write share one database transaction.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from pool_wallet.datastore.engines import create_engine
from pool_wallet.datastore.migrations import ensure_schema

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from pool_wallet.config.settings import DatabaseConfig

logger = logging.getLogger(__name__)


class Datastore:
    """Async datastore for the wallet's account and session-info rows.

    Usage::

        ds = Datastore(db_config)
        await ds.open()
        async with ds.transaction() as db:
            record = await db.get(AccountRecord, name)
            ...
        await ds.close()
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            msg = "Datastore is not open. Call open() first."
            raise RuntimeError(msg)
        return self._engine

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    async def open(self, *, migrate: bool = True) -> list[str]:
        """Create the engine and, unless ``migrate`` is false, the wallet tables.

        Returns:
            Names of the tables created while opening.

        Raises:
            SchemaOutdatedError: If the database predates the current models.
        """
        engine = create_engine(self._config)
        created: list[str] = []
        if migrate:
            try:
                created = await ensure_schema(engine)
            except Exception:
                await engine.dispose()
                raise
        self._engine = engine
        # Rows are read back after commit when the blob is re-encrypted
        self._session_factory = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        logger.debug("Account datastore open (%s)", self._config.engine)
        return created

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    def session(self) -> AsyncSession:
        """A plain session for reads; use as an async context manager."""
        if self._session_factory is None:
            msg = "Datastore is not open. Call open() first."
            raise RuntimeError(msg)
        return self._session_factory()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """A session inside one transaction, committed on exit and rolled back on error."""
        async with self.session() as db, db.begin():
            yield db

    async def ping(self) -> bool:
        """Whether the database answers a trivial query."""
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning("Account datastore unreachable: %s", exc)
            return False
        return True
