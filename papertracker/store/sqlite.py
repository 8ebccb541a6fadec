"""SQLite-backed object store."""

import asyncio
import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from papertracker.errors import NotFoundError, RecordExistsError, RemoteUnavailableError
from papertracker.models.paper import utc_now_iso
from papertracker.store.base import ObjectStore, StoredObject


class SqliteObjectStore(ObjectStore):
    """Object store persisted to a local SQLite file.

    Objects go to ``objects``; appended events go to ``events`` and are
    never updated or deleted.  Blocking sqlite calls run in a worker
    thread so the event loop is not held up.
    """

    def __init__(self, db_path: Path):
        """Initialize store with database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._init_db()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise RemoteUnavailableError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            raise RemoteUnavailableError(f"SQLite error: {e}") from e
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS objects (
                    key TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL REFERENCES objects(key),
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_events_key ON events(key);")
            conn.commit()

    # ── Blocking implementations ──────────────────────────────────────

    def _get(self, key: str) -> Optional[StoredObject]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT key, data, created_at, updated_at FROM objects WHERE key = ?",
                (key,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            cursor.execute(
                "SELECT payload FROM events WHERE key = ? ORDER BY id ASC",
                (key,),
            )
            events = [json.loads(r["payload"]) for r in cursor.fetchall()]

        return StoredObject(
            key=row["key"],
            data=json.loads(row["data"]),
            events=events,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _create(self, key: str, initial: dict[str, Any]) -> StoredObject:
        now = utc_now_iso()
        try:
            with self._connection() as conn:
                conn.execute(
                    "INSERT INTO objects (key, data, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    (key, json.dumps(initial), now, now),
                )
                conn.commit()
        except sqlite3.IntegrityError as e:
            raise RecordExistsError(f"Object already exists: {key}") from e
        return StoredObject(key=key, data=initial, created_at=now, updated_at=now)

    def _update(self, key: str, event: dict[str, Any]) -> StoredObject:
        now = utc_now_iso()
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("UPDATE objects SET updated_at = ? WHERE key = ?", (now, key))
            if cursor.rowcount == 0:
                raise NotFoundError(f"No stored object for {key}")
            cursor.execute(
                "INSERT INTO events (key, payload, created_at) VALUES (?, ?, ?)",
                (key, json.dumps(event), now),
            )
            conn.commit()
        obj = self._get(key)
        if obj is None:
            raise NotFoundError(f"No stored object for {key}")
        return obj

    # ── ObjectStore API ───────────────────────────────────────────────

    async def get(self, key: str) -> Optional[StoredObject]:
        return await asyncio.to_thread(self._get, key)

    async def create(self, key: str, initial: dict[str, Any]) -> StoredObject:
        return await asyncio.to_thread(self._create, key, initial)

    async def update(self, key: str, event: dict[str, Any]) -> StoredObject:
        return await asyncio.to_thread(self._update, key, event)

    def count(self) -> int:
        """Return the number of stored objects."""
        with self._connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS cnt FROM objects").fetchone()
        return row["cnt"]
