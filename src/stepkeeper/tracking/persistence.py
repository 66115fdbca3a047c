"""Persistence of tracking state and session history.

Flushes are full snapshots written under two independent keys, so a crash
while writing one record never corrupts the other. Loading reads both keys
independently and fails open: a corrupt tracking record means "no prior
session", a corrupt history entry is skipped on its own.

The engine uses ``aload`` and ``aflush``, which run the store calls on a
worker thread; the CLI uses the blocking ``load`` and ``flush``.

Flush triggers (owned by the engine):
- before start and stop return
- every ``interval`` seconds while tracking
- on the foreground -> background transition
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from stepkeeper.errors import PersistenceCorruptError
from stepkeeper.logging import log_flush
from stepkeeper.models import TrackingState
from stepkeeper.state.records import (
    HISTORY_KEY,
    TRACKING_KEY,
    TrackingRecord,
    decode_history,
    decode_tracking,
    encode_history,
    encode_tracking,
)
from stepkeeper.state.store import StoreError
from stepkeeper.tracking.ledger import SessionLedger
from stepkeeper.tracking.timers import PeriodicTask

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from stepkeeper.state.store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_SAVE_INTERVAL = 10.0


@dataclass
class LoadedState:
    """Result of rehydrating from the store.

    Attributes:
        state: Tracking state (defaults if nothing usable was stored)
        ledger: Session history and lifetime total
        corrupt_keys: Keys whose records were discarded as unreadable
        skipped_sessions: History entries skipped individually
    """

    state: TrackingState
    ledger: SessionLedger
    corrupt_keys: list[str] = field(default_factory=list)
    skipped_sessions: int = 0


class PersistenceScheduler:
    """Reads and writes tracker state, and runs the periodic flush timer.

    Args:
        store: Durable key-value store
        interval: Seconds between periodic flushes while tracking
    """

    def __init__(self, store: KeyValueStore, interval: float = DEFAULT_SAVE_INTERVAL) -> None:
        self.store = store
        self.interval = interval
        self._timer: PeriodicTask | None = None
        self.flush_count = 0

    def load(self) -> LoadedState:
        """Rehydrate state and history from the store."""
        corrupt: list[str] = []
        state = TrackingState()
        lifetime_total: int | None = None

        raw_tracking = self._read(TRACKING_KEY)
        if raw_tracking is not None:
            try:
                record = decode_tracking(raw_tracking)
            except PersistenceCorruptError as e:
                logger.warning("Discarding tracking record, starting idle: %s", e)
                corrupt.append(e.key)
            else:
                state = record.to_state()
                lifetime_total = record.lifetime_total

        sessions = []
        skipped = 0
        raw_history = self._read(HISTORY_KEY)
        if raw_history is not None:
            try:
                sessions, skipped = decode_history(raw_history)
            except PersistenceCorruptError as e:
                logger.warning("Discarding history record: %s", e)
                corrupt.append(e.key)

        ledger = SessionLedger.restore(sessions, lifetime_total)
        logger.info(
            "Loaded state: tracking=%s, session_steps=%d, sessions=%d, lifetime_total=%d",
            state.is_tracking,
            state.session_steps,
            len(ledger),
            ledger.lifetime_total,
        )
        return LoadedState(
            state=state,
            ledger=ledger,
            corrupt_keys=corrupt,
            skipped_sessions=skipped,
        )

    def _read(self, key: str) -> str | None:
        try:
            return self.store.get(key)
        except StoreError as e:
            logger.warning("Cannot read %s, treating as absent: %s", key, e)
            return None

    async def aload(self) -> LoadedState:
        """Like ``load``, with store reads on a worker thread."""
        return await asyncio.to_thread(self.load)

    def flush(self, state: TrackingState, ledger: SessionLedger, reason: str) -> bool:
        """Write both records.

        Each key is attempted even if the other fails.

        Args:
            state: Live tracking state
            ledger: Session history
            reason: Logged trigger ('start', 'stop', 'interval', 'paused', ...)

        Returns:
            True if both keys were written
        """
        errors = self._write(self._encode(state, ledger))
        return self._report(state, ledger, reason, errors)

    async def aflush(self, state: TrackingState, ledger: SessionLedger, reason: str) -> bool:
        """Like ``flush``, with store writes on a worker thread.

        Records are encoded before handing off, so the worker never reads
        the live state. Callers must not start another flush until this
        one returns.
        """
        payloads = self._encode(state, ledger)
        errors = await asyncio.to_thread(self._write, payloads)
        return self._report(state, ledger, reason, errors)

    @staticmethod
    def _encode(state: TrackingState, ledger: SessionLedger) -> list[tuple[str, str]]:
        record = TrackingRecord.from_state(state, ledger.lifetime_total)
        return [
            (TRACKING_KEY, encode_tracking(record)),
            (HISTORY_KEY, encode_history(list(ledger.history()))),
        ]

    def _write(self, payloads: list[tuple[str, str]]) -> list[str]:
        errors: list[str] = []
        for key, payload in payloads:
            try:
                self.store.set(key, payload)
            except StoreError as e:
                errors.append(str(e))
        return errors

    def _report(
        self,
        state: TrackingState,
        ledger: SessionLedger,
        reason: str,
        errors: list[str],
    ) -> bool:
        ok = not errors
        if ok:
            self.flush_count += 1
        log_flush(
            reason=reason,
            is_tracking=state.is_tracking,
            session_steps=state.session_steps,
            sessions=len(ledger),
            ok=ok,
            error="; ".join(errors) or None,
        )
        return ok

    @property
    def running(self) -> bool:
        return self._timer is not None and self._timer.running

    def start(self, tick: Callable[[], Awaitable[None]]) -> None:
        """Start the periodic flush timer calling ``tick``."""
        if self._timer is None:
            self._timer = PeriodicTask("flush", self.interval, tick)
        self._timer.start()

    async def cancel(self) -> None:
        """Stop the periodic flush timer."""
        if self._timer is not None:
            await self._timer.cancel()
