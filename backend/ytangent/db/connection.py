"""aiosqlite connection shared by the event log and its projections."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite

from ytangent.db.schema import SCHEMA_SQL

DEFAULT_DB_PATH = "ytangent.db"

_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA busy_timeout=5000",
)


class Database:
    """One connection, one writer at a time.

    Statements outside transaction() commit immediately. Inside it they
    commit together when the block exits, or roll back if it raises.
    """

    def __init__(self, connection: aiosqlite.Connection) -> None:
        self._conn = connection
        self._write_lock = asyncio.Lock()
        self._tx_owner: asyncio.Task | None = None

    @classmethod
    async def connect(cls, path: str = DEFAULT_DB_PATH) -> "Database":
        conn = await aiosqlite.connect(path)
        conn.row_factory = aiosqlite.Row
        for pragma in _PRAGMAS:
            await conn.execute(pragma)
        db = cls(conn)
        await db._ensure_schema()
        return db

    async def _ensure_schema(self) -> None:
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()

    def _in_transaction(self) -> bool:
        return self._tx_owner is not None and self._tx_owner is asyncio.current_task()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Group writes so they land together or not at all."""
        if self._in_transaction():
            yield
            return
        async with self._write_lock:
            self._tx_owner = asyncio.current_task()
            try:
                yield
            except BaseException:
                await self._conn.rollback()
                raise
            else:
                await self._conn.commit()
            finally:
                self._tx_owner = None

    async def execute(self, sql: str, params: tuple | None = None) -> aiosqlite.Cursor:
        if self._in_transaction():
            return await self._conn.execute(sql, params or ())
        async with self._write_lock:
            cursor = await self._conn.execute(sql, params or ())
            await self._conn.commit()
            return cursor

    async def fetchone(self, sql: str, params: tuple | None = None) -> aiosqlite.Row | None:
        cursor = await self._conn.execute(sql, params or ())
        return await cursor.fetchone()

    async def fetchall(self, sql: str, params: tuple | None = None) -> list[aiosqlite.Row]:
        cursor = await self._conn.execute(sql, params or ())
        return list(await cursor.fetchall())

    async def close(self) -> None:
        await self._conn.close()
