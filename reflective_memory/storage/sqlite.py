"""
SQLite key-value store for reranker weights and message buffers.

One row per ``(namespace, key)`` holding a JSON document, accessed through
aiosqlite.
"""

import json
from datetime import datetime
from typing import Any

import aiosqlite

from reflective_memory.config import StorageConfig
from reflective_memory.storage.base import BaseStore, Namespace, StoreItem, StorageError, utcnow


SCHEMA = """
CREATE TABLE IF NOT EXISTS store (
    namespace TEXT NOT NULL,
    key TEXT NOT NULL,
    value_json TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (namespace, key)
);

CREATE INDEX IF NOT EXISTS idx_store_namespace ON store(namespace);
"""

# Unit separator; never appears in user ids
NAMESPACE_SEPARATOR = "\x1f"


def _encode_namespace(namespace: Namespace) -> str:
    return NAMESPACE_SEPARATOR.join(namespace)


class SQLiteStore(BaseStore):
    """
    SQLite-backed namespaced key-value store.

    Values are stored as JSON text. ``created_at`` survives overwrites.
    Use as ``async with SQLiteStore(config) as store:`` or call
    ``connect``/``disconnect`` explicitly.
    """

    def __init__(self, config: StorageConfig | None = None):
        self.config = config or StorageConfig()
        self.path = self.config.sqlite_path
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open the database file (creating its directory) and apply the schema."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            db = await aiosqlite.connect(str(self.path))
            db.row_factory = aiosqlite.Row
            await db.executescript(SCHEMA)
            await db.commit()
        except Exception as e:
            raise StorageError(f"Could not open SQLite store at {self.path}: {e}") from e
        self._db = db

    async def disconnect(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def is_connected(self) -> bool:
        return self._db is not None

    def _require_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("SQLite store used before connect()")
        return self._db

    async def get(self, namespace: Namespace, key: str) -> StoreItem | None:
        db = self._require_db()

        try:
            async with db.execute(
                "SELECT value_json, created_at, updated_at FROM store WHERE namespace = ? AND key = ?",
                (_encode_namespace(namespace), key),
            ) as cursor:
                row = await cursor.fetchone()
        except Exception as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

        if row is None:
            return None

        try:
            value = json.loads(row["value_json"])
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt value for {key}: {e}") from e

        return StoreItem(
            value=value,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def put(self, namespace: Namespace, key: str, value: dict[str, Any]) -> None:
        db = self._require_db()

        now = utcnow().isoformat()
        try:
            await db.execute(
                """
                INSERT INTO store (namespace, key, value_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(namespace, key) DO UPDATE SET
                    value_json = excluded.value_json,
                    updated_at = excluded.updated_at
                """,
                (_encode_namespace(namespace), key, json.dumps(value), now, now),
            )
            await db.commit()
        except Exception as e:
            raise StorageError(f"Failed to write {key}: {e}") from e

    async def __aenter__(self) -> "SQLiteStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()
