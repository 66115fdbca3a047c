"""Time providers.

The tracker never calls ``datetime.now`` directly: session start/end times,
staleness checks and poll windows all go through a TimeProvider so that
recovery and staleness behaviour can be tested with deterministic time.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol


class TimeProvider(Protocol):
    """Protocol for providing current time."""

    def now(self) -> datetime:
        """Get the current UTC time.

        Returns:
            Current datetime in UTC.
        """
        ...


class SystemTimeProvider:
    """Default time provider using system clock."""

    def now(self) -> datetime:
        """Get current UTC time from system clock."""
        return datetime.now(UTC)


class FixedTimeProvider:
    """Time provider with a settable time (for testing).

    Example:
        >>> clock = FixedTimeProvider(datetime(2026, 1, 10, 12, 0, 0, tzinfo=UTC))
        >>> clock.advance(hours=13)
        >>> clock.now()
        datetime.datetime(2026, 1, 11, 1, 0, tzinfo=datetime.timezone.utc)
    """

    def __init__(self, fixed_time: datetime) -> None:
        self._fixed_time = fixed_time

    def now(self) -> datetime:
        """Return the fixed time."""
        return self._fixed_time

    def set(self, value: datetime) -> None:
        """Move the clock to an absolute time."""
        self._fixed_time = value

    def advance(self, **delta: float) -> None:
        """Move the clock forward by a ``timedelta(**delta)``."""
        self._fixed_time = self._fixed_time + timedelta(**delta)


def start_of_local_day(moment: datetime) -> datetime:
    """Return midnight of the local calendar day containing ``moment``.

    Health providers report "steps today", so the poll window starts at the
    local midnight rather than the UTC one.
    """
    local = moment.astimezone()
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(UTC)
