"""Schema versions of the SQLite state database.

The database holds a handful of JSON records, one row per key in
``kv_store``. Changes to a record's fields are absorbed by the record
models (unknown keys are ignored, missing ones take defaults), so the SQL
schema only moves when the table layout itself changes.

Every applied version is written to ``schema_version``. Opening a database
written by a newer stepkeeper fails instead of writing rows that version
may not understand.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from stepkeeper.errors import StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchemaStep:
    """One schema version and the statements that produce it from the previous one."""

    version: int
    description: str
    statements: tuple[str, ...]


SCHEMA_STEPS: tuple[SchemaStep, ...] = (
    SchemaStep(
        version=1,
        description="key-value records",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """,
        ),
    ),
)

CURRENT_SCHEMA_VERSION = SCHEMA_STEPS[-1].version


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Highest applied schema version, 0 for an empty database."""
    has_table = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
    ).fetchone()
    if has_table is None:
        return 0
    (version,) = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return version or 0


def migrate_database(conn: sqlite3.Connection) -> int:
    """Bring the database up to CURRENT_SCHEMA_VERSION.

    A version's ``schema_version`` row is committed only after all of its
    statements ran, so an interrupted upgrade resumes at the first missing
    version on the next open.

    Args:
        conn: Open connection to the state database

    Returns:
        The schema version after migrating

    Raises:
        StoreError: If the database is newer than this code or a step fails
    """
    current = get_schema_version(conn)
    if current > CURRENT_SCHEMA_VERSION:
        msg = (
            f"State database schema v{current} is newer than supported "
            f"v{CURRENT_SCHEMA_VERSION}; upgrade stepkeeper"
        )
        raise StoreError(msg)

    for step in SCHEMA_STEPS:
        if step.version <= current:
            continue
        try:
            with conn:
                for statement in step.statements:
                    conn.execute(statement)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (step.version,))
        except sqlite3.Error as e:
            msg = f"Schema migration to v{step.version} failed: {e}"
            raise StoreError(msg) from e
        logger.info("Applied schema v%d: %s", step.version, step.description)
        current = step.version

    return current
