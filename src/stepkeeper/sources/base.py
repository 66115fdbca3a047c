"""Counter source interfaces.

A counter source reports a cumulative, monotonically non-decreasing step
count. Two shapes exist:

- PushCounterSource: an async stream of readings (device motion sensor)
- PollCounterSource: an on-demand query over a time window (health provider)

Either, both or neither may be available at any moment. Sources raise
SourceUnavailableError (or AuthorizationDeniedError) and never return a
made-up value.

Each source names the counter series it reports. Sources on the same
series count the same steps and are compared directly; a source on a
different series is aligned when it first reports.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from datetime import datetime

    from stepkeeper.models import Reading


@runtime_checkable
class PushCounterSource(Protocol):
    """Stream of cumulative readings."""

    name: str
    series: str

    def is_available(self) -> bool:
        """Whether the stream can currently be subscribed to."""
        ...

    def subscribe(self) -> AsyncGenerator[Reading, None]:
        """Yield readings until the stream ends or fails.

        Raises:
            SourceUnavailableError: If the stream cannot be opened or breaks
        """
        ...


@runtime_checkable
class PollCounterSource(Protocol):
    """On-demand cumulative query."""

    name: str
    series: str

    def is_available(self) -> bool:
        """Whether the source is configured and may be queried."""
        ...

    async def query_cumulative(self, window_start: datetime, window_end: datetime) -> int:
        """Return the cumulative step count within the window.

        Raises:
            AuthorizationDeniedError: If access to step data is refused
            SourceUnavailableError: If the source cannot be reached
        """
        ...
