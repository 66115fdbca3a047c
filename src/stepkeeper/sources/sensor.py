"""Push-style step sensors.

- QueueSensor: in-process sensor fed by the host with ``push(value)``
- JsonLinesSensor: tails a JSON-lines file written by a sensor bridge,
  one ``{"timestamp": "...", "steps": n}`` record per line
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from stepkeeper.errors import SourceUnavailableError
from stepkeeper.models import DEFAULT_SERIES, Reading, ReadingSource, ensure_utc

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from stepkeeper.config.schema import SensorConfig

logger = logging.getLogger(__name__)


class _StreamEnd:
    """Queue marker ending the current subscription."""


class QueueSensor:
    """Sensor fed programmatically.

    Values pushed while nobody is subscribed are kept and delivered to the
    next subscriber. ``fail`` and ``end`` terminate the current
    subscription, which the tracker answers by reconnecting.

    Example:
        >>> sensor = QueueSensor()
        >>> sensor.push(1200)
    """

    name = "sensor"

    def __init__(self, *, available: bool = True, series: str = DEFAULT_SERIES) -> None:
        self.available = available
        self.series = series
        self._queue: asyncio.Queue[Reading | BaseException | _StreamEnd] = asyncio.Queue()
        self.subscriptions = 0

    def is_available(self) -> bool:
        return self.available

    def push(self, value: int, observed_at: datetime | None = None) -> None:
        """Report a new cumulative value."""
        reading = Reading(
            source=ReadingSource.SENSOR,
            cumulative=value,
            series=self.series,
            observed_at=observed_at or datetime.now(UTC),
        )
        self._queue.put_nowait(reading)

    def fail(self, error: BaseException | None = None) -> None:
        """Break the current subscription with ``error``."""
        if error is None:
            error = SourceUnavailableError("Sensor stream failed", source=self.name)
        self._queue.put_nowait(error)

    def end(self) -> None:
        """End the current subscription normally."""
        self._queue.put_nowait(_StreamEnd())

    async def subscribe(self) -> AsyncGenerator[Reading, None]:
        """Yield pushed readings until ended or failed."""
        if not self.available:
            msg = "Sensor is not available"
            raise SourceUnavailableError(msg, source=self.name)
        self.subscriptions += 1
        while True:
            item = await self._queue.get()
            if isinstance(item, _StreamEnd):
                return
            if isinstance(item, BaseException):
                raise item
            yield item


class SensorLine(BaseModel):
    """One record of the sensor bridge file."""

    model_config = ConfigDict(extra="ignore")

    timestamp: datetime
    steps: int = Field(..., ge=0)

    @field_validator("timestamp")
    @classmethod
    def validate_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class JsonLinesSensor:
    """Tails a JSON-lines file of cumulative sensor readings.

    On subscribe the most recent record already in the file is reported
    first (the current counter value), then each appended record. A
    truncated or replaced file is re-read from the start.

    Args:
        path: File the sensor bridge appends to
        poll_interval: Seconds between checks for new lines
        series: Counter series the bridge reports
    """

    name = "sensor"

    def __init__(
        self,
        path: Path | str,
        poll_interval: float = 0.5,
        series: str = DEFAULT_SERIES,
    ) -> None:
        self.path = Path(path).expanduser()
        self.poll_interval = poll_interval
        self.series = series

    @classmethod
    def from_config(cls, config: SensorConfig) -> JsonLinesSensor:
        """Build a sensor from the sensor config section."""
        return cls(config.get_path(), poll_interval=config.poll_interval, series=config.series)

    def is_available(self) -> bool:
        return self.path.is_file()

    @staticmethod
    def parse_line(line: str, series: str = DEFAULT_SERIES) -> Reading | None:
        """Parse one record, returning None for blank or malformed lines."""
        line = line.strip()
        if not line:
            return None
        try:
            record = SensorLine.model_validate_json(line)
        except ValidationError as e:
            logger.warning("Skipping malformed sensor line: %d error(s)", e.error_count())
            return None
        return Reading(
            source=ReadingSource.SENSOR,
            cumulative=record.steps,
            series=series,
            observed_at=record.timestamp,
        )

    async def subscribe(self) -> AsyncGenerator[Reading, None]:
        """Yield the latest existing record, then every appended record.

        Raises:
            SourceUnavailableError: If the file is missing or unreadable
        """
        position = 0
        pending = ""
        first = True

        while True:
            try:
                size = self.path.stat().st_size
                if size < position:
                    logger.info("Sensor file %s was truncated, re-reading", self.path)
                    position = 0
                    pending = ""
                with self.path.open("r", encoding="utf-8") as f:
                    f.seek(position)
                    chunk = f.read()
                    position = f.tell()
            except OSError as e:
                msg = f"Cannot read sensor file {self.path}: {e}"
                raise SourceUnavailableError(msg, source=self.name) from e

            pending += chunk
            *lines, pending = pending.split("\n")
            parsed = (self.parse_line(line, self.series) for line in lines)
            readings = [r for r in parsed if r is not None]

            if first:
                # Only the current value matters for history already in the file
                readings = readings[-1:]
                first = False

            for reading in readings:
                yield reading

            await asyncio.sleep(self.poll_interval)
