"""Durable key-value stores for tracking state.

The tracker persists exactly two string values (the tracking-state record
and the session history record) under independent keys. Any object with
``get``/``set``/``remove`` works; two implementations ship here:

- SQLiteStateStore: one row per key in a migrated SQLite database, created
  with chmod 600
- MemoryStateStore: dict-backed, for embedding hosts and tests

No atomicity across keys is assumed by callers.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from stepkeeper.errors import StoreError
from stepkeeper.state.migrations import migrate_database

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Minimal durable key-value interface consumed by the tracker."""

    def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...

    def remove(self, key: str) -> None:
        """Delete ``key`` if present."""
        ...


class MemoryStateStore:
    """In-memory store. Contents are lost when the process exits."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)

    def close(self) -> None:
        """No-op, for interface parity with SQLiteStateStore."""


class SQLiteStateStore:
    """SQLite-based key-value persistence.

    Each ``set`` is its own transaction, so a crash while writing one key
    never touches the row of another key.

    The database file is created with chmod 600. The connection may be
    used from any thread, but calls must not overlap.

    Args:
        db_path: Path to the SQLite database file
        timeout: Seconds to wait on a locked database before failing

    Example:
        >>> from stepkeeper.paths import get_default_db_path
        >>> store = SQLiteStateStore(get_default_db_path())
        >>> store.set("stepkeeper.tracking", "{}")
        >>> store.get("stepkeeper.tracking")
        '{}'
    """

    def __init__(self, db_path: str | Path, timeout: float = 15.0) -> None:
        self.db_path = Path(db_path).expanduser().resolve()
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None

        self._ensure_database()

    def _ensure_database(self) -> None:
        """Create the database directory and file, then run migrations."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        is_new = not self.db_path.exists()

        conn = self._get_connection()
        try:
            migrate_database(conn)
        except StoreError:
            self.close()
            raise

        if is_new and self.db_path.exists():
            try:
                os.chmod(self.db_path, 0o600)  # noqa: PTH101
                logger.debug("Set database permissions to 600: %s", self.db_path)
            except OSError as e:
                logger.warning("Could not set database permissions: %s", e)

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            # The tracker writes from a worker thread, one call at a time
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.timeout,
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            # WAL keeps readers (status/history commands) off the writer's lock
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for transactional operations.

        Yields:
            The database connection

        Raises:
            Exception: Re-raises any exception after rollback
        """
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def get(self, key: str) -> str | None:
        """Load a value by key.

        Raises:
            StoreError: If the database cannot be read
        """
        try:
            cursor = self._get_connection().execute(
                "SELECT value FROM kv_store WHERE key = ?",
                (key,),
            )
            row = cursor.fetchone()
        except sqlite3.Error as e:
            msg = f"Cannot read key {key!r}: {e}"
            raise StoreError(msg) from e
        return None if row is None else row["value"]

    def set(self, key: str, value: str) -> None:
        """Replace the value stored under ``key``.

        Raises:
            StoreError: If the write fails (the previous value is kept)
        """
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                    VALUES (?, ?, datetime('now'))
                    """,
                    (key, value),
                )
        except sqlite3.Error as e:
            msg = f"Cannot write key {key!r}: {e}"
            raise StoreError(msg) from e
        logger.debug("Stored key: %s (%d bytes)", key, len(value))

    def remove(self, key: str) -> None:
        """Delete ``key`` if present.

        Raises:
            StoreError: If the delete fails
        """
        try:
            with self.transaction() as conn:
                conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        except sqlite3.Error as e:
            msg = f"Cannot remove key {key!r}: {e}"
            raise StoreError(msg) from e
        logger.debug("Removed key: %s", key)
