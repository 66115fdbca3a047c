"""Reconciliation of cumulative counter readings into session steps.

Every source (sensor stream, provider poll, recovery query) goes through
the same ``Reconciler.apply`` against the single shared
``last_observed_cumulative``. Whichever source reports the higher value
wins the delta for an interval; the other source's later reading yields
``delta <= 0`` and is discarded, so running both sources never double
counts.

Each source keeps a cursor (``TrackingState.sources``) whose offset maps
its raw values onto the normalized count. A source joining on a series
already seen takes that series' offset and is compared directly. A source
on a new series is aligned onto the current count without attributing
steps, since two different counters cannot be compared.

A reading far below the normalized count is only a counter reset (device
reboot, sensor restart) when the source went backwards against its own
previous value. The source's offset then moves so it continues where the
count ended: no steps are attributed and the normalized count never
decreases. A source that is merely behind another one is dropped, and its
lag never moves anybody's offset.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from stepkeeper.logging import log_counter_reset, log_reading_reconciled
from stepkeeper.models import SourceCursor

if TYPE_CHECKING:
    from datetime import datetime

    from stepkeeper.models import Reading, TrackingState

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, Enum):
    """What a reading did to the tracking state."""

    COUNTED = "counted"
    BASELINE_SET = "baseline_set"
    OBSERVED = "observed"
    ALIGNED = "aligned"
    RESET = "reset"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class ReconcileResult:
    """Result of reconciling one reading.

    Attributes:
        outcome: What happened
        delta: Steps attributed to the open session (0 unless COUNTED)
    """

    outcome: ReconcileOutcome
    delta: int = 0

    @property
    def changed(self) -> bool:
        """Whether the tracking state was modified."""
        return self.outcome is not ReconcileOutcome.DUPLICATE


class Reconciler:
    """Applies counter readings to a TrackingState.

    Args:
        reset_tolerance: A reading may fall this many steps below the last
                         observed value and still be treated as a stale
                         duplicate rather than a counter reset.
    """

    def __init__(self, reset_tolerance: int = 10) -> None:
        self.reset_tolerance = reset_tolerance

    def apply(self, state: TrackingState, reading: Reading, now: datetime) -> ReconcileResult:
        """Reconcile ``reading`` into ``state``.

        Must be called by the single owner of ``state``; the read-modify-write
        of last_observed_cumulative and session_steps is not safe to interleave.

        Args:
            state: Live tracking state (mutated in place)
            reading: Reading to apply
            now: Reconciliation time, recorded as the checkpoint time

        Returns:
            ReconcileResult describing the change
        """
        result = self._apply(state, reading, now)
        log_reading_reconciled(
            source=reading.source.value,
            cumulative=reading.cumulative,
            outcome=result.outcome.value,
            delta=result.delta,
            session_steps=state.session_steps,
        )
        return result

    def _apply(self, state: TrackingState, reading: Reading, now: datetime) -> ReconcileResult:
        raw = reading.cumulative
        last = state.last_observed_cumulative
        source = reading.source.value

        cursor = state.sources.get(source)
        continuing = not state.sources
        if cursor is None or cursor.series != reading.series:
            cursor, aligned = self._join(state, reading)
            if aligned:
                cursor.last_raw = raw
                if not state.is_tracking or state.session_baseline is not None:
                    state.system_cumulative = raw
                    state.last_checkpoint_time = now
                    return ReconcileResult(ReconcileOutcome.ALIGNED)

        previous_raw = cursor.last_raw
        cursor.last_raw = raw
        value = raw + cursor.offset

        if last is not None and value < last - self.reset_tolerance:
            if previous_raw is None:
                restarted = continuing
            else:
                restarted = raw < previous_raw - self.reset_tolerance
            if not restarted:
                return ReconcileResult(ReconcileOutcome.DUPLICATE)
            cursor.offset = last - raw
            state.system_cumulative = raw
            state.last_checkpoint_time = now
            if state.is_tracking:
                # Session steps stay; the baseline restarts at the rebase point
                state.session_baseline = last
            log_counter_reset(source=source, previous=last, reported=raw, offset=cursor.offset)
            return ReconcileResult(ReconcileOutcome.RESET)

        if not state.is_tracking:
            if last is None or value > last:
                state.observe(value, raw, now)
                return ReconcileResult(ReconcileOutcome.OBSERVED)
            return ReconcileResult(ReconcileOutcome.DUPLICATE)

        if state.session_baseline is None:
            baseline = value if last is None else max(value, last)
            state.session_baseline = baseline
            state.session_steps = 0
            state.observe(baseline, raw, now)
            return ReconcileResult(ReconcileOutcome.BASELINE_SET)

        if last is None:
            # Baseline known but nothing observed yet: measure from the baseline
            last = state.session_baseline

        delta = value - last
        if delta <= 0:
            return ReconcileResult(ReconcileOutcome.DUPLICATE)

        state.session_steps += delta
        state.observe(value, raw, now)
        return ReconcileResult(ReconcileOutcome.COUNTED, delta=delta)

    @staticmethod
    def _join(state: TrackingState, reading: Reading) -> tuple[SourceCursor, bool]:
        """Create the cursor for a source reporting for the first time.

        Returns:
            Tuple of (cursor, whether it was aligned onto the current count)
        """
        last = state.last_observed_cumulative
        peers = [
            c
            for name, c in state.sources.items()
            if c.series == reading.series and name != reading.source.value
        ]
        peer = peers[0] if peers else None
        aligned = False
        if peer is not None:
            offset = peer.offset
        elif last is None or not state.sources:
            # First source, or a state saved before cursors were recorded
            offset = 0
        else:
            aligned = True
            offset = last - reading.cumulative
            logger.info(
                "Aligned %s series %r at %d onto %d",
                reading.source.value,
                reading.series,
                reading.cumulative,
                last,
            )
        cursor = SourceCursor(series=reading.series, offset=offset)
        state.sources[reading.source.value] = cursor
        return cursor, aligned
