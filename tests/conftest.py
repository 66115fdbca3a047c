"""Shared pytest fixtures for stepkeeper tests.

This module provides common fixtures for:
- Temporary config files
- Deterministic time (FixedTimeProvider, freezegun)
- State stores (in-memory and SQLite)
- Fake counter sources and a tracker factory
"""

from __future__ import annotations

import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest
import structlog
import yaml

from stepkeeper.clock import FixedTimeProvider
from stepkeeper.config import NotificationConfig, TrackingConfig
from stepkeeper.errors import SourceUnavailableError
from stepkeeper.models import DEFAULT_SERIES, TrackingState
from stepkeeper.sources import QueueSensor
from stepkeeper.state import MemoryStateStore, SQLiteStateStore
from stepkeeper.tracking import Reconciler, SessionLedger, StepTracker, TrackingStateMachine

if TYPE_CHECKING:
    from collections.abc import Callable, Generator


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """Undo configure_logging() calls made by CLI and logging tests."""
    yield
    structlog.reset_defaults()


# ============================================================================
# Time Fixtures
# ============================================================================


@pytest.fixture
def frozen_time() -> datetime:
    """Return a fixed datetime for deterministic tests.

    Use with freezegun's freeze_time decorator:

        @freeze_time("2026-01-10T15:30:00Z")
        def test_something(frozen_time):
            assert datetime.now(UTC) == frozen_time
    """
    return datetime(2026, 1, 10, 15, 30, 0, tzinfo=UTC)


@pytest.fixture
def clock(frozen_time: datetime) -> FixedTimeProvider:
    """Settable clock starting at ``frozen_time``."""
    return FixedTimeProvider(frozen_time)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory (cleaned up after test)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def minimal_config() -> dict[str, Any]:
    """Return a minimal valid configuration dictionary."""
    return {
        "version": 1,
        "sensor": {"path": "/tmp/stepkeeper-sensor.jsonl"},
    }


@pytest.fixture
def sample_config(temp_dir: Path) -> dict[str, Any]:
    """Return a configuration with both sources and a state directory."""
    return {
        "version": 1,
        "tracking": {
            "save_interval": 5,
            "staleness_hours": 12,
        },
        "provider": {
            "base_url": "https://health.example.com/",
            "token": "${TEST_PROVIDER_TOKEN}",
            "poll_interval": 60,
        },
        "sensor": {
            "path": str(temp_dir / "sensor.jsonl"),
        },
        "state": {
            "directory": str(temp_dir / "state"),
        },
    }


@pytest.fixture
def write_config(temp_dir: Path) -> Callable[[dict[str, Any], str], Path]:
    """Factory fixture to write config files.

    Args:
        config: Configuration dictionary
        filename: Name of the config file (default: config.yaml)

    Returns:
        Path to the written config file
    """

    def _write(config: dict[str, Any], filename: str = "config.yaml") -> Path:
        path = temp_dir / filename
        with path.open("w") as f:
            yaml.safe_dump(config, f)
        return path

    return _write


@pytest.fixture
def fast_tracking() -> TrackingConfig:
    """Tracking config with timers far in the future so tests drive every tick."""
    return TrackingConfig(
        save_interval=3600,
        refresh_interval=3600,
        stale_after=3600,
        io_timeout=1,
        retry_step=0.01,
        retry_max=0.05,
    )


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def test_db_path(temp_dir: Path) -> Path:
    """Return path for a test database file."""
    return temp_dir / "state.db"


@pytest.fixture
def sqlite_store(test_db_path: Path) -> Generator[SQLiteStateStore, None, None]:
    """Create a SQLiteStateStore for testing.

    Yields:
        Initialized store (closed after test)
    """
    store = SQLiteStateStore(test_db_path)
    yield store
    store.close()


@pytest.fixture
def memory_store() -> MemoryStateStore:
    return MemoryStateStore()


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
def state() -> TrackingState:
    return TrackingState()


@pytest.fixture
def machine(state: TrackingState) -> TrackingStateMachine:
    """State machine over a fresh state and ledger."""
    return TrackingStateMachine(state, SessionLedger(), Reconciler(reset_tolerance=10))


class FakeProvider:
    """Poll source returning scripted values.

    Set ``value`` to the next cumulative count, or ``error`` to an exception
    to raise on the next query.
    """

    name = "provider"
    series = DEFAULT_SERIES

    def __init__(self, value: int | None = None, *, available: bool = True) -> None:
        self.value = value
        self.error: Exception | None = None
        self.available = available
        self.queries: list[tuple[datetime, datetime]] = []

    def is_available(self) -> bool:
        return self.available

    async def query_cumulative(self, window_start: datetime, window_end: datetime) -> int:
        self.queries.append((window_start, window_end))
        if self.error is not None:
            raise self.error
        if self.value is None:
            msg = "no data"
            raise SourceUnavailableError(msg, source=self.name)
        return self.value


class RecordingNotifier:
    """Notifier that records start/stop edges."""

    def __init__(self) -> None:
        self.events: list[str] = []

    def tracking_started(self, title: str, content: str) -> None:
        self.events.append(f"started:{title}")

    def tracking_stopped(self) -> None:
        self.events.append("stopped")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider(1000)


@pytest.fixture
def sensor() -> QueueSensor:
    return QueueSensor()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_tracker(
    memory_store: MemoryStateStore,
    clock: FixedTimeProvider,
    fast_tracking: TrackingConfig,
    notifier: RecordingNotifier,
) -> Callable[..., StepTracker]:
    """Factory fixture building trackers over the shared store and clock.

    Trackers built from the same test share one store, so building a second
    tracker simulates a process restart.
    """

    def _make(**kwargs: Any) -> StepTracker:
        kwargs.setdefault("config", fast_tracking)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("notifier", notifier)
        kwargs.setdefault("notifications", NotificationConfig(title="Steps"))
        kwargs.setdefault("poll_interval", 3600)
        return StepTracker(memory_store, **kwargs)

    return _make
