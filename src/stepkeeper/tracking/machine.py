"""Tracking state machine: IDLE <-> TRACKING, plus startup recovery.

The machine performs no I/O. The engine fetches whatever readings a
transition needs first, then calls the machine while holding the state
lock.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

from stepkeeper.logging import log_recovery, log_session_closed
from stepkeeper.models import Session

if TYPE_CHECKING:
    from datetime import datetime

    from stepkeeper.models import Reading, TrackingState
    from stepkeeper.tracking.ledger import SessionLedger
    from stepkeeper.tracking.reconciler import Reconciler

logger = logging.getLogger(__name__)

DEFAULT_STALENESS = timedelta(hours=12)


class RecoveryOutcome(str, Enum):
    """What the startup recovery pass did."""

    NOT_NEEDED = "not_needed"
    INCONSISTENT_RESET = "inconsistent_reset"
    STALE_CLOSED = "stale_closed"
    RESTARTED = "restarted"
    GAP_ATTRIBUTED = "gap_attributed"
    AWAITING_READING = "awaiting_reading"


class TrackingStateMachine:
    """Drives session start, stop and recovery.

    Args:
        state: Live tracking state
        ledger: Completed session history
        reconciler: Shared reading reconciler
        staleness: Sessions older than this are force-closed on recovery
        baseline_max_age: How recent the last observed value must be to
                          serve as a new session's baseline
    """

    def __init__(
        self,
        state: TrackingState,
        ledger: SessionLedger,
        reconciler: Reconciler,
        *,
        staleness: timedelta = DEFAULT_STALENESS,
        baseline_max_age: timedelta = timedelta(seconds=60),
    ) -> None:
        self.state = state
        self.ledger = ledger
        self.reconciler = reconciler
        self.staleness = staleness
        self.baseline_max_age = baseline_max_age

    def start(self, now: datetime, reading: Reading | None = None) -> bool:
        """Open a new session.

        Args:
            now: Session start time
            reading: Fresh reading to take the baseline from, if any

        Returns:
            True if a session was opened, False if one was already open
        """
        if self.state.is_tracking:
            return False

        if reading is not None:
            # Idle reconciliation only advances last_observed (or rebases it)
            self.reconciler.apply(self.state, reading, now)

        baseline = self._current_baseline(now, fresh=reading is not None)
        self.state.open_session(now, baseline)
        logger.info(
            "Session started at %s (baseline: %s)",
            now.isoformat(),
            "pending" if baseline is None else baseline,
        )
        return True

    def _current_baseline(self, now: datetime, *, fresh: bool) -> int | None:
        """Last observed value if it can stand for "now", else None."""
        observed = self.state.last_observed_cumulative
        if observed is None:
            return None
        if fresh:
            return observed
        checkpoint = self.state.last_checkpoint_time
        if checkpoint is not None and now - checkpoint <= self.baseline_max_age:
            return observed
        return None

    def stop(self, now: datetime, *, reason: str = "stop") -> Session | None:
        """Close the open session, folding its steps into the ledger.

        Args:
            now: Session end time
            reason: Logged reason for the close

        Returns:
            The appended Session, or None if nothing was recorded
        """
        if not self.state.is_tracking:
            return None

        session: Session | None = None
        if self.state.session_steps > 0:
            start_time = self.state.session_start_time or now
            session = Session(
                steps=self.state.session_steps,
                start_time=start_time,
                end_time=max(now, start_time),
            )
            self.ledger.append(session)
            log_session_closed(
                steps=session.steps,
                start_time=session.start_time.isoformat(),
                end_time=session.end_time.isoformat(),
                lifetime_total=self.ledger.lifetime_total,
                reason=reason,
            )

        self.state.clear_session()
        return session

    def is_stale(self, now: datetime) -> bool:
        """Whether the open session started longer ago than the staleness threshold."""
        start = self.state.session_start_time
        return start is not None and now - start > self.staleness

    def recover(self, now: datetime, reading: Reading | None) -> RecoveryOutcome:
        """One-time recovery of a session that was open when the process died.

        Args:
            now: Current time
            reading: Current counter value from a source, if one could be queried

        Returns:
            RecoveryOutcome describing the path taken
        """
        state = self.state
        if not state.is_tracking:
            return RecoveryOutcome.NOT_NEEDED

        if state.session_start_time is None:
            logger.warning("Persisted session has no start time; resetting to idle")
            state.clear_session()
            log_recovery(RecoveryOutcome.INCONSISTENT_RESET.value)
            return RecoveryOutcome.INCONSISTENT_RESET

        if self.is_stale(now):
            # Close at the last time the session was known to be alive
            end = state.last_checkpoint_time
            if end is None or end < state.session_start_time:
                end = now
            steps = state.session_steps
            self.stop(end, reason="stale")
            log_recovery(RecoveryOutcome.STALE_CLOSED.value, session_steps=steps)
            return RecoveryOutcome.STALE_CLOSED

        if state.session_baseline is None:
            # Killed before the first reading: start over, elapsed time is lost
            state.clear_session()
            self.start(now, reading)
            log_recovery(RecoveryOutcome.RESTARTED.value)
            return RecoveryOutcome.RESTARTED

        if reading is None:
            log_recovery(
                RecoveryOutcome.AWAITING_READING.value,
                session_steps=state.session_steps,
            )
            return RecoveryOutcome.AWAITING_READING

        before = state.session_steps
        self.reconciler.apply(state, reading, now)
        recovered = state.session_steps - before
        log_recovery(
            RecoveryOutcome.GAP_ATTRIBUTED.value,
            recovered_steps=recovered,
            session_steps=state.session_steps,
        )
        return RecoveryOutcome.GAP_ATTRIBUTED
