"""StepTracker: the session tracking and recovery engine.

All mutations of the tracking state and session ledger go through
``StepTracker.dispatch``, serialized by one asyncio.Lock. The concurrent
inputs feeding it are:

1. the sensor stream (a supervisor task that reconnects with backoff)
2. the provider poll timer (fetches outside the lock, then dispatches)
3. host lifecycle edges (resumed / paused / detached)
4. the persistence flush timer
5. the foreground refresh timer, which re-emits the snapshot and re-polls
   when no reading has been seen for ``stale_after`` seconds

Store reads and writes run on a worker thread while the lock is held, so a
slow disk stalls other dispatches but never the event loop.

No public operation raises: failures are logged and reported as False.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

from stepkeeper.clock import SystemTimeProvider, start_of_local_day
from stepkeeper.config.schema import NotificationConfig, TrackingConfig
from stepkeeper.errors import AuthorizationDeniedError, SourceUnavailableError
from stepkeeper.logging import log_source_error
from stepkeeper.models import (
    LifecycleEvent,
    Reading,
    ReadingSource,
    Session,
    StepSnapshot,
    TrackingState,
)
from stepkeeper.notify import LogNotifier
from stepkeeper.tracking.emitter import UpdateEmitter, UpdateSubscription
from stepkeeper.tracking.ledger import SessionLedger
from stepkeeper.tracking.machine import RecoveryOutcome, TrackingStateMachine
from stepkeeper.tracking.persistence import PersistenceScheduler
from stepkeeper.tracking.reconciler import Reconciler
from stepkeeper.tracking.timers import PeriodicTask, backoff_delay

if TYPE_CHECKING:
    from datetime import datetime

    from stepkeeper.clock import TimeProvider
    from stepkeeper.notify import TrackingNotifier
    from stepkeeper.sources.base import PollCounterSource, PushCounterSource
    from stepkeeper.state.store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 30.0


# Events accepted by StepTracker.dispatch


@dataclass(frozen=True)
class ReadingEvent:
    """A cumulative reading from any source."""

    reading: Reading


@dataclass(frozen=True)
class LifecycleChange:
    """A host lifecycle edge."""

    event: LifecycleEvent


class TimerTick(str, Enum):
    """Timer ticks that need the state lock."""

    FLUSH = "flush"
    REFRESH = "refresh"


@dataclass(frozen=True)
class StartRequest:
    """Open a session, optionally baselined on a freshly fetched reading."""

    reading: Reading | None = None


@dataclass(frozen=True)
class StopRequest:
    """Close the open session."""


@dataclass(frozen=True)
class ClearHistoryRequest:
    """Remove all completed sessions (idle only)."""


@dataclass(frozen=True)
class ClearTotalRequest:
    """Zero the lifetime total (empty history, idle only)."""


TrackerEvent = (
    ReadingEvent
    | LifecycleChange
    | TimerTick
    | StartRequest
    | StopRequest
    | ClearHistoryRequest
    | ClearTotalRequest
)


class StepTracker:
    """Host-facing step tracker.

    Construct explicitly, ``await initialize()`` once, then use the query
    and command methods. ``dispose()`` releases timers, the sensor
    subscription and all update subscriptions; an open session stays
    persisted and is recovered by the next ``initialize()``.

    Args:
        store: Durable key-value store
        sensor: Push counter source, if any
        provider: Poll counter source, if any
        config: Engine timing and thresholds
        notifications: Notification texts and switch
        clock: Time provider (system clock by default)
        notifier: Receives tracking start/stop edges
        poll_interval: Seconds between provider polls while tracking

    Example:
        >>> tracker = StepTracker(MemoryStateStore(), sensor=QueueSensor())
        >>> await tracker.initialize()
        >>> await tracker.start_tracking()
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        sensor: PushCounterSource | None = None,
        provider: PollCounterSource | None = None,
        config: TrackingConfig | None = None,
        notifications: NotificationConfig | None = None,
        clock: TimeProvider | None = None,
        notifier: TrackingNotifier | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.config = config or TrackingConfig()
        self.notifications = notifications or NotificationConfig()
        self._sensor = sensor
        self._provider = provider
        self._clock = clock or SystemTimeProvider()
        self._notifier = notifier or LogNotifier()

        self._lock = asyncio.Lock()
        self._state = TrackingState()
        self._ledger = SessionLedger()
        self._reconciler = Reconciler(reset_tolerance=self.config.reset_tolerance)
        self._machine = self._build_machine()
        self._emitter = UpdateEmitter()
        self._persistence = PersistenceScheduler(store, interval=self.config.save_interval)

        self._poll_timer = PeriodicTask("poll", poll_interval, self._poll_tick)
        self._refresh_timer = PeriodicTask(
            "refresh", self.config.refresh_interval, self._refresh_tick
        )
        self._sensor_task: asyncio.Task[None] | None = None

        self._initialized = False
        self._disposed = False
        self._foreground = True
        self._last_reading_at: datetime | None = None
        self.recovery_outcome: RecoveryOutcome | None = None

    def _build_machine(self) -> TrackingStateMachine:
        return TrackingStateMachine(
            self._state,
            self._ledger,
            self._reconciler,
            staleness=timedelta(hours=self.config.staleness_hours),
            baseline_max_age=timedelta(seconds=self.config.baseline_max_age),
        )

    # Lifecycle of the tracker itself

    async def initialize(self) -> bool:
        """Rehydrate persisted state and run the one-time recovery pass.

        Returns:
            True once initialized, False if the tracker was disposed
        """
        if self._disposed:
            return False
        if self._initialized:
            return True

        async with self._lock:
            loaded = await self._persistence.aload()
            self._state = loaded.state
            self._ledger = loaded.ledger
            self._machine = self._build_machine()
            needs_recovery = self._state.is_tracking

        if needs_recovery:
            reading = await self._query_provider()
            async with self._lock:
                now = self._clock.now()
                self.recovery_outcome = self._machine.recover(now, reading)
                self._last_reading_at = now
                await self._persistence.aflush(self._state, self._ledger, reason="recovery")
        else:
            self.recovery_outcome = RecoveryOutcome.NOT_NEEDED

        async with self._lock:
            if self._disposed:
                return False
            self._initialized = True
            self._emitter.open()
            if self._state.is_tracking:
                self._notify_started()
                self._start_tracking_tasks()
            self._publish()

        logger.info(
            "Tracker initialized (tracking=%s, recovery=%s)",
            self._state.is_tracking,
            self.recovery_outcome.value,
        )
        return True

    async def dispose(self) -> bool:
        """Cancel all timers and subscriptions and close the emitter.

        The open session, if any, is flushed but not stopped. Idempotent.
        """
        if self._disposed:
            return True
        self._disposed = True

        async with self._lock:
            await self._stop_tracking_tasks()
            if self._initialized:
                await self._persistence.aflush(self._state, self._ledger, reason="dispose")
            self._emitter.close()

        logger.info("Tracker disposed")
        return True

    # Host API

    async def start_tracking(self) -> bool:
        """Open a session.

        Needs at least one counter source: an available sensor or a provider
        that answers a query. Starting while already tracking succeeds
        without effect.
        """
        if not self._ready():
            return False
        if self._state.is_tracking:
            return True

        reading = await self._query_provider()
        sensor_ready = self._sensor is not None and self._sensor.is_available()
        if reading is None and not sensor_ready:
            error = SourceUnavailableError("No counter source is available")
            logger.warning("Cannot start tracking: %s", error)
            return False

        return await self.dispatch(StartRequest(reading))

    async def stop_tracking(self) -> bool:
        """Close the open session. Stopping while idle succeeds without effect."""
        if not self._ready():
            return False
        return await self.dispatch(StopRequest())

    def is_tracking(self) -> bool:
        return self._state.is_tracking

    def get_total_steps(self) -> int:
        """Lifetime total, including the open session."""
        return self._ledger.total(self._state.is_tracking, self._state.session_steps)

    def get_session_steps(self) -> int:
        """Steps in the open session, 0 while idle."""
        return self._state.session_steps if self._state.is_tracking else 0

    def get_system_cumulative(self) -> int:
        """Last raw counter value reported by any source."""
        return self._state.system_cumulative

    def get_session_history(self) -> list[Session]:
        """Completed sessions in completion order."""
        return list(self._ledger.history())

    def snapshot(self) -> StepSnapshot:
        """Current consistent view of the tracker."""
        return StepSnapshot(
            total_steps=self.get_total_steps(),
            system_cumulative=self.get_system_cumulative(),
            session_steps=self.get_session_steps(),
            is_tracking=self._state.is_tracking,
        )

    def subscribe_updates(self) -> UpdateSubscription:
        """Subscribe to snapshots. Ends when the tracker is disposed."""
        return self._emitter.subscribe()

    async def clear_session_history(self) -> bool:
        """Remove all completed sessions; refused while tracking."""
        if not self._ready():
            return False
        return await self.dispatch(ClearHistoryRequest())

    async def clear_total_steps(self) -> bool:
        """Zero the lifetime total; refused unless history is empty and idle."""
        if not self._ready():
            return False
        return await self.dispatch(ClearTotalRequest())

    async def handle_lifecycle(self, event: LifecycleEvent) -> bool:
        """Apply a host lifecycle edge."""
        if not self._ready():
            return False
        ok = await self.dispatch(LifecycleChange(event))
        if ok and event is LifecycleEvent.RESUMED and self._state.is_tracking:
            await self._poll_tick()
        return ok

    def _ready(self) -> bool:
        if self._disposed:
            logger.debug("Ignoring call on disposed tracker")
            return False
        if not self._initialized:
            logger.warning("Tracker used before initialize()")
            return False
        return True

    # Single serialized entry point

    async def dispatch(self, event: TrackerEvent) -> bool:
        """Apply one event under the state lock.

        Returns:
            True if the event was applied (or was a no-op success)
        """
        async with self._lock:
            if self._disposed or not self._initialized:
                return False
            return await self._handle(event)

    async def _handle(self, event: TrackerEvent) -> bool:  # noqa: PLR0911
        if isinstance(event, ReadingEvent):
            return self._on_reading(event.reading)
        if isinstance(event, TimerTick):
            return await self._on_tick(event)
        if isinstance(event, LifecycleChange):
            return await self._on_lifecycle(event.event)
        if isinstance(event, StartRequest):
            return await self._on_start(event.reading)
        if isinstance(event, StopRequest):
            return await self._on_stop()
        if isinstance(event, ClearHistoryRequest):
            return await self._on_clear_history()
        if isinstance(event, ClearTotalRequest):
            return await self._on_clear_total()
        msg = f"Unknown tracker event: {event!r}"
        raise TypeError(msg)

    def _on_reading(self, reading: Reading) -> bool:
        now = self._clock.now()
        self._last_reading_at = now
        result = self._reconciler.apply(self._state, reading, now)
        if result.changed:
            self._publish()
        return True

    async def _on_tick(self, tick: TimerTick) -> bool:
        if tick is TimerTick.FLUSH:
            if self._state.is_tracking:
                await self._persistence.aflush(self._state, self._ledger, reason="interval")
        elif tick is TimerTick.REFRESH:
            self._publish()
        return True

    async def _on_lifecycle(self, event: LifecycleEvent) -> bool:
        logger.info("Lifecycle: %s", event.value)
        if event is LifecycleEvent.RESUMED:
            self._foreground = True
            if self._state.is_tracking:
                self._start_sensor()
                self._refresh_timer.start()
            self._publish()
            return True

        self._foreground = False
        await self._refresh_timer.cancel()
        if event is LifecycleEvent.DETACHED:
            await self._stop_sensor()
        await self._persistence.aflush(self._state, self._ledger, reason=event.value)
        return True

    async def _on_start(self, reading: Reading | None) -> bool:
        if self._state.is_tracking:
            return True
        now = self._clock.now()
        self._machine.start(now, reading)
        self._last_reading_at = now
        await self._persistence.aflush(self._state, self._ledger, reason="start")
        self._notify_started()
        self._start_tracking_tasks()
        self._publish()
        return True

    async def _on_stop(self) -> bool:
        if not self._state.is_tracking:
            return True
        await self._stop_tracking_tasks()
        self._machine.stop(self._clock.now())
        await self._persistence.aflush(self._state, self._ledger, reason="stop")
        if self.notifications.enabled:
            self._notifier.tracking_stopped()
        self._publish()
        return True

    async def _on_clear_history(self) -> bool:
        failure = self._ledger.clear(self._state.is_tracking)
        if failure is not None:
            logger.warning("Cannot clear session history: %s", failure.value)
            return False
        await self._persistence.aflush(self._state, self._ledger, reason="clear_history")
        self._publish()
        return True

    async def _on_clear_total(self) -> bool:
        failure = self._ledger.reset_lifetime_total(self._state.is_tracking)
        if failure is not None:
            logger.warning("Cannot clear total steps: %s", failure.value)
            return False
        await self._persistence.aflush(self._state, self._ledger, reason="clear_total")
        self._publish()
        return True

    # Helpers run under the lock

    def _publish(self) -> None:
        self._emitter.publish(self.snapshot())

    def _notify_started(self) -> None:
        if self.notifications.enabled:
            self._notifier.tracking_started(self.notifications.title, self.notifications.content)

    def _start_tracking_tasks(self) -> None:
        self._start_sensor()
        self._persistence.start(self._flush_tick)
        if self._provider is not None:
            self._poll_timer.start()
        if self._foreground:
            self._refresh_timer.start()

    async def _stop_tracking_tasks(self) -> None:
        await self._stop_sensor()
        await self._persistence.cancel()
        await self._poll_timer.cancel()
        await self._refresh_timer.cancel()

    def _start_sensor(self) -> None:
        if self._sensor is None:
            return
        if self._sensor_task is not None and not self._sensor_task.done():
            return
        self._sensor_task = asyncio.create_task(
            self._run_sensor(self._sensor), name="stepkeeper-sensor"
        )

    async def _stop_sensor(self) -> None:
        task = self._sensor_task
        self._sensor_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # Source I/O, never under the lock

    async def _run_sensor(self, sensor: PushCounterSource) -> None:
        """Keep a sensor subscription alive until cancelled."""
        retry_count = 0
        while True:
            try:
                async with contextlib.aclosing(sensor.subscribe()) as stream:
                    async for reading in stream:
                        retry_count = 0
                        await self.dispatch(ReadingEvent(reading))
                error = "stream ended"
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = str(e) or type(e).__name__

            retry_count += 1
            delay = backoff_delay(retry_count, self.config.retry_step, self.config.retry_max)
            log_source_error(sensor.name, error, retry_in=delay)
            await asyncio.sleep(delay)

    async def _query_provider(self) -> Reading | None:
        """Fetch today's cumulative count from the provider, if any."""
        if self._provider is None or not self._provider.is_available():
            return None
        now = self._clock.now()
        try:
            value = await asyncio.wait_for(
                self._provider.query_cumulative(start_of_local_day(now), now),
                timeout=self.config.io_timeout,
            )
        except AuthorizationDeniedError as e:
            log_source_error(self._provider.name, f"authorization denied: {e}")
            return None
        except SourceUnavailableError as e:
            log_source_error(self._provider.name, str(e))
            return None
        except TimeoutError:
            log_source_error(self._provider.name, f"timed out after {self.config.io_timeout}s")
            return None
        except Exception as e:
            # Provider SDK failures must not reach dispatch or the timers
            log_source_error(self._provider.name, str(e) or type(e).__name__)
            return None
        return Reading(
            source=ReadingSource.PROVIDER,
            cumulative=value,
            series=self._provider.series,
            observed_at=now,
        )

    async def _poll_tick(self) -> None:
        reading = await self._query_provider()
        if reading is not None:
            await self.dispatch(ReadingEvent(reading))

    async def _flush_tick(self) -> None:
        await self.dispatch(TimerTick.FLUSH)

    async def _refresh_tick(self) -> None:
        await self.dispatch(TimerTick.REFRESH)
        if not self._state.is_tracking:
            return
        last = self._last_reading_at
        if last is not None and (self._clock.now() - last).total_seconds() < self.config.stale_after:
            return

        logger.info("No reading for %.0fs, reconnecting sources", self.config.stale_after)
        async with self._lock:
            if self._disposed or not self._state.is_tracking:
                return
            await self._stop_sensor()
            self._start_sensor()
        await self._poll_tick()
