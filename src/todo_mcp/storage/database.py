"""Async engine and session factory shared by every MCP session."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from todo_mcp.storage.models import Base

logger = logging.getLogger(__name__)

SQLITE_LOWER_FUNCTION = "unicode_lower"


def _unicode_lower(value: str | None) -> str | None:
    return value.lower() if value is not None else None


def _register_sqlite_functions(dbapi_connection: Any, connection_record: Any) -> None:
    # SQLite's built-in lower() only folds ASCII letters
    dbapi_connection.create_function(SQLITE_LOWER_FUNCTION, 1, _unicode_lower, deterministic=True)


class Database:
    """Owns the SQLAlchemy async engine for one database URL.

    The connection pool is created lazily on first use and released by
    :meth:`dispose`.
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, echo=echo)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _register_sqlite_functions)
        self._sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self._sessionmaker() as session:
            yield session

    async def create_schema(self) -> None:
        """Create the tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Database schema ready at {make_url(self.url).render_as_string(hide_password=True)}")

    async def check_connection(self) -> None:
        """Round-trip a trivial statement.

        Raises:
            sqlalchemy.exc.SQLAlchemyError: if the database cannot be reached.
        """
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def dispose(self) -> None:
        await self.engine.dispose()
