"""SQLite-backed LocalStore.

Keeps the key-value pairs in a single table accessed through aiosqlite.
"""

import sqlite3
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

import aiosqlite

from src.sync.errors import StorageError

# SQL schema for the key-value table
CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS local_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


class SqliteStore:
    """Async SQLite key-value store.

    Each ``set`` is committed immediately so a crash never loses an
    acknowledged write.
    """

    def __init__(self, db_path: Path | str):
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._connection: aiosqlite.Connection | None = None

    @asynccontextmanager
    async def _get_connection(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Get a database connection.

        Yields:
            An aiosqlite connection.
        """
        if self._connection is None:
            self._connection = await aiosqlite.connect(self.db_path)
            self._connection.row_factory = aiosqlite.Row
        yield self._connection

    async def initialize(self) -> None:
        """Initialize the database, creating the table if needed."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with self._get_connection() as conn:
                await conn.execute(CREATE_TABLE_SQL)
                await conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Failed to open local store {self.db_path}: {e}", e) from e

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def get(self, key: str) -> str | None:
        """Get the value stored under a key.

        Args:
            key: The key to look up.

        Returns:
            The stored string, or None if the key is absent.
        """
        try:
            async with self._get_connection() as conn:
                cursor = await conn.execute(
                    "SELECT value FROM local_store WHERE key = ?",
                    (key,),
                )
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read '{key}': {e}", e) from e

        if row is None:
            return None
        return row["value"]

    async def set(self, key: str, value: str) -> None:
        """Insert or replace the value stored under a key."""
        try:
            async with self._get_connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO local_store (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, value, datetime.now().isoformat()),
                )
                await conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write '{key}': {e}", e) from e

    async def remove(self, key: str) -> None:
        """Delete a key (no-op if absent)."""
        try:
            async with self._get_connection() as conn:
                await conn.execute("DELETE FROM local_store WHERE key = ?", (key,))
                await conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to remove '{key}': {e}", e) from e

    async def keys(self) -> list[str]:
        """List stored keys in sorted order."""
        try:
            async with self._get_connection() as conn:
                cursor = await conn.execute("SELECT key FROM local_store ORDER BY key")
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list keys: {e}", e) from e
        return [row["key"] for row in rows]
