"""store.py — The durable, append-only entry log.

SQLite, one connection per call. Nothing here holds an in-process lock
across a storage call; SQLite's own locking serializes writers, and a
per-call connection makes every method safe to run from a worker thread
(the pipelines call in through asyncio.to_thread).

Each write is a single statement inside a transaction: it either commits
with an id or rolls back and raises StorageError. There is no partial
write to clean up.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Sequence

import logfire
import pendulum

from .errors import StorageError
from .models import Entry, encodable, join_tags, normalize_username, split_tags

# The daily window is capped; there is no pagination past it.
SNAPSHOT_LIMIT = 500


CREATE_USERS_TABLE = """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT UNIQUE NOT NULL,
        token TEXT UNIQUE NOT NULL,
        created_at TEXT NOT NULL
    )
"""

CREATE_ENTRIES_TABLE = """
    CREATE TABLE IF NOT EXISTS log_entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER,
        message TEXT NOT NULL,
        tags TEXT,
        ts TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users (id)
    )
"""

INSERT_ENTRY = """
    INSERT INTO log_entries (user_id, message, tags, ts)
    VALUES (?, ?, ?, ?)
"""

# Compare the date prefix of the RFC 3339 timestamp against the local day.
SELECT_DAY_ENTRIES = f"""
    SELECT le.id, u.username, le.message, le.tags, le.ts
    FROM log_entries le
    LEFT JOIN users u ON le.user_id = u.id
    WHERE substr(le.ts, 1, 10) = ?
    ORDER BY le.ts ASC, le.id ASC
    LIMIT {SNAPSHOT_LIMIT}
"""

# Inner join: unowned entries never match a username filter.
SELECT_DAY_ENTRIES_BY_USER = f"""
    SELECT le.id, u.username, le.message, le.tags, le.ts
    FROM log_entries le
    JOIN users u ON le.user_id = u.id
    WHERE u.username = ? AND substr(le.ts, 1, 10) = ?
    ORDER BY le.ts ASC, le.id ASC
    LIMIT {SNAPSHOT_LIMIT}
"""


class Database:
    """Location of the SQLite file plus the schema that lives in it."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Open a short-lived connection. Always closed on exit."""
        try:
            conn = sqlite3.connect(self.path, timeout=10.0)
        except sqlite3.Error as e:
            raise StorageError(f"cannot open database: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            try:
                conn.execute("PRAGMA foreign_keys = ON")
            except sqlite3.Error as e:
                raise StorageError(f"cannot open database: {e}") from e
            yield conn
        finally:
            conn.close()

    def init(self) -> None:
        """Create the tables if they are missing. Idempotent."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as conn:
            try:
                with conn:
                    conn.execute(CREATE_USERS_TABLE)
                    conn.execute(CREATE_ENTRIES_TABLE)
            except sqlite3.Error as e:
                raise StorageError(f"schema setup failed: {e}") from e
        logfire.info("Database ready ({path})", path=str(self.path))


def _row_to_entry(row: sqlite3.Row) -> Entry:
    return Entry(
        id=row["id"],
        message=row["message"],
        tags=split_tags(row["tags"]),
        timestamp=row["ts"],
        username=row["username"],
    )


class EntryStore:
    """Append entries; read back one local calendar day at a time."""

    def __init__(self, db: Database):
        self._db = db

    @property
    def db(self) -> Database:
        return self._db

    def append(
        self,
        message: str,
        tags: Sequence[str] | None,
        timestamp: str,
        user_id: int | None = None,
    ) -> int:
        """Persist one entry and return its assigned id.

        Raises StorageError on constraint violation or I/O failure; in
        that case no row exists.
        """
        with self._db.connect() as conn:
            try:
                with conn:
                    cursor = conn.execute(
                        INSERT_ENTRY, (user_id, message, join_tags(tags), timestamp)
                    )
                    entry_id = cursor.lastrowid
            except sqlite3.Error as e:
                raise StorageError(f"failed to insert entry: {e}") from e
        if entry_id is None:
            raise StorageError("insert returned no row id")
        return entry_id

    def query_today(
        self, username: str | None = None, day: str | None = None
    ) -> list[Entry]:
        """Entries from the current local day, oldest first, at most 500.

        Args:
            username: Restrict to this user's entries (normalized first).
            day: YYYY-MM-DD to use instead of today.
        """
        day = day or pendulum.today().to_date_string()
        if username:
            username = normalize_username(username)
            if not encodable(username):
                return []
            sql, params = SELECT_DAY_ENTRIES_BY_USER, (username, day)
        else:
            sql, params = SELECT_DAY_ENTRIES, (day,)

        with self._db.connect() as conn:
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"failed to query entries: {e}") from e
        return [_row_to_entry(row) for row in rows]

    def count(self) -> int:
        """Total number of persisted entries."""
        with self._db.connect() as conn:
            try:
                (total,) = conn.execute("SELECT COUNT(*) FROM log_entries").fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"failed to count entries: {e}") from e
        return total
