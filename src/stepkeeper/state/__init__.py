"""State management module for stepkeeper.

This module provides durable persistence for:
- The tracking-state record (open session, baselines, lifetime total)
- The session history record

Usage:
    from stepkeeper.state import SQLiteStateStore
    from stepkeeper.paths import get_default_db_path

    store = SQLiteStateStore(get_default_db_path())  # XDG data path
    store.get(TRACKING_KEY)
"""

from stepkeeper.state.migrations import CURRENT_SCHEMA_VERSION, migrate_database
from stepkeeper.state.records import (
    HISTORY_KEY,
    TRACKING_KEY,
    TrackingRecord,
    decode_history,
    decode_tracking,
    encode_history,
    encode_tracking,
)
from stepkeeper.state.store import (
    KeyValueStore,
    MemoryStateStore,
    SQLiteStateStore,
    StoreError,
)

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "HISTORY_KEY",
    "TRACKING_KEY",
    "KeyValueStore",
    "MemoryStateStore",
    "SQLiteStateStore",
    "StoreError",
    "TrackingRecord",
    "decode_history",
    "decode_tracking",
    "encode_history",
    "encode_tracking",
    "migrate_database",
]
