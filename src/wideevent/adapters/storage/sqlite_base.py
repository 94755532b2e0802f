"""Connection management for SQLite-backed adapters."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import aiosqlite


def to_epoch(value: datetime | None) -> float | None:
    """Convert a datetime to a UNIX timestamp column value."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.timestamp()


def from_epoch(value: float | None) -> datetime | None:
    """Convert a UNIX timestamp column value to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=UTC)


class AsyncConnectionManager:
    """Manages aiosqlite connections for one database.

    Applies the schema once, on first use. For :memory: databases a single
    persistent connection is kept, since SQLite in-memory databases are
    connection-scoped. Rows are returned as ``aiosqlite.Row`` mappings.
    """

    def __init__(self, db_path: str, schema: str) -> None:
        self._db_path = db_path
        self._schema = schema
        self._initialized = False
        self._init_lock: asyncio.Lock | None = None
        self._persistent_conn: aiosqlite.Connection | None = None

    def _get_lock(self) -> asyncio.Lock:
        """Get or create the initialization lock (lazy to avoid event loop issues)."""
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        return self._init_lock

    @property
    def _is_memory(self) -> bool:
        return self._db_path == ":memory:"

    async def _open(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self._db_path)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA foreign_keys=ON")
        return conn

    async def _ensure_initialized(self) -> None:
        """Apply the schema once."""
        if self._initialized:
            return
        async with self._get_lock():
            if self._initialized:
                return
            if self._is_memory:
                self._persistent_conn = await self._open()
                await self._persistent_conn.executescript(self._schema)
            else:
                conn = await self._open()
                try:
                    await conn.execute("PRAGMA journal_mode=WAL")
                    await conn.executescript(self._schema)
                finally:
                    await conn.close()
            self._initialized = True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection, closing it afterwards unless it is persistent."""
        await self._ensure_initialized()
        if self._is_memory:
            if self._persistent_conn is None:
                raise RuntimeError("Memory database connection not initialized")
            yield self._persistent_conn
            return
        conn = await self._open()
        try:
            yield conn
        finally:
            await conn.close()

    async def close(self) -> None:
        """Close the persistent connection (for :memory: databases)."""
        if self._persistent_conn is not None:
            await self._persistent_conn.close()
            self._persistent_conn = None
            self._initialized = False
