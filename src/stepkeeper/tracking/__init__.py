"""Session tracking and recovery engine.

This module provides:
- StepTracker: the host-facing engine (single serialized dispatch path)
- Reconciler: raw cumulative readings -> session deltas
- TrackingStateMachine: start / stop / recover transitions
- SessionLedger: completed sessions and the lifetime total
- UpdateEmitter: latest-wins snapshot broadcast
- PersistenceScheduler: load and flush of the two persisted records

Usage:
    from stepkeeper.tracking import StepTracker
    from stepkeeper.state import MemoryStateStore

    tracker = StepTracker(MemoryStateStore(), provider=client)
    await tracker.initialize()
"""

from stepkeeper.tracking.emitter import UpdateEmitter, UpdateSubscription
from stepkeeper.tracking.engine import (
    ClearHistoryRequest,
    ClearTotalRequest,
    LifecycleChange,
    ReadingEvent,
    StartRequest,
    StepTracker,
    StopRequest,
    TimerTick,
)
from stepkeeper.tracking.ledger import SessionLedger
from stepkeeper.tracking.machine import RecoveryOutcome, TrackingStateMachine
from stepkeeper.tracking.persistence import LoadedState, PersistenceScheduler
from stepkeeper.tracking.reconciler import ReconcileOutcome, Reconciler, ReconcileResult
from stepkeeper.tracking.timers import PeriodicTask, backoff_delay

__all__ = [
    "ClearHistoryRequest",
    "ClearTotalRequest",
    "LifecycleChange",
    "LoadedState",
    "PeriodicTask",
    "PersistenceScheduler",
    "ReadingEvent",
    "ReconcileOutcome",
    "ReconcileResult",
    "Reconciler",
    "RecoveryOutcome",
    "SessionLedger",
    "StartRequest",
    "StepTracker",
    "StopRequest",
    "TimerTick",
    "TrackingStateMachine",
    "UpdateEmitter",
    "UpdateSubscription",
    "backoff_delay",
]
