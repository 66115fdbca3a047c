"""Tests for push-style sensors."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

import pytest

from stepkeeper.errors import SourceUnavailableError
from stepkeeper.models import ReadingSource
from stepkeeper.sources import JsonLinesSensor, QueueSensor

if TYPE_CHECKING:
    from pathlib import Path

pytestmark = pytest.mark.asyncio


def line(steps: int, timestamp: str = "2026-01-10T15:30:00Z") -> str:
    return json.dumps({"timestamp": timestamp, "steps": steps}) + "\n"


class TestQueueSensor:
    async def test_pushed_values_are_streamed(self) -> None:
        sensor = QueueSensor()
        sensor.push(10)
        sensor.push(20)
        sensor.end()

        readings = [r async for r in sensor.subscribe()]

        assert [r.cumulative for r in readings] == [10, 20]
        assert all(r.source is ReadingSource.SENSOR for r in readings)

    async def test_fail_breaks_subscription(self) -> None:
        sensor = QueueSensor()
        sensor.push(10)
        sensor.fail()

        stream = sensor.subscribe()
        assert (await anext(stream)).cumulative == 10
        with pytest.raises(SourceUnavailableError):
            await anext(stream)

    async def test_unavailable_sensor_refuses_subscription(self) -> None:
        sensor = QueueSensor(available=False)

        assert not sensor.is_available()
        with pytest.raises(SourceUnavailableError):
            await anext(sensor.subscribe())


class TestJsonLinesSensor:
    async def test_missing_file_is_unavailable(self, temp_dir: Path) -> None:
        sensor = JsonLinesSensor(temp_dir / "missing.jsonl")

        assert not sensor.is_available()
        with pytest.raises(SourceUnavailableError):
            await anext(sensor.subscribe())

    async def test_reports_latest_existing_then_appended(self, temp_dir: Path) -> None:
        path = temp_dir / "sensor.jsonl"
        path.write_text(line(100) + line(150) + line(175))
        sensor = JsonLinesSensor(path, poll_interval=0.01)

        stream = sensor.subscribe()
        first = await asyncio.wait_for(anext(stream), timeout=1)

        with path.open("a") as f:
            f.write(line(190))
            f.write(line(200))

        second = await asyncio.wait_for(anext(stream), timeout=1)
        third = await asyncio.wait_for(anext(stream), timeout=1)
        await stream.aclose()

        assert [first.cumulative, second.cumulative, third.cumulative] == [175, 190, 200]

    async def test_partial_line_waits_for_newline(self, temp_dir: Path) -> None:
        path = temp_dir / "sensor.jsonl"
        path.write_text(line(5) + '{"timestamp": "2026-01-10T15:31:00Z", "st')
        sensor = JsonLinesSensor(path, poll_interval=0.01)

        stream = sensor.subscribe()
        assert (await asyncio.wait_for(anext(stream), timeout=1)).cumulative == 5

        with path.open("a") as f:
            f.write('eps": 9}\n')

        assert (await asyncio.wait_for(anext(stream), timeout=1)).cumulative == 9
        await stream.aclose()

    async def test_malformed_lines_are_skipped(self, temp_dir: Path) -> None:
        path = temp_dir / "sensor.jsonl"
        path.write_text(line(1))
        sensor = JsonLinesSensor(path, poll_interval=0.01)

        stream = sensor.subscribe()
        await asyncio.wait_for(anext(stream), timeout=1)
        with path.open("a") as f:
            f.write("not json\n")
            f.write(json.dumps({"timestamp": "2026-01-10T15:31:00Z", "steps": -4}) + "\n")
            f.write(line(12))

        assert (await asyncio.wait_for(anext(stream), timeout=1)).cumulative == 12
        await stream.aclose()

    async def test_truncated_file_is_reread(self, temp_dir: Path) -> None:
        path = temp_dir / "sensor.jsonl"
        path.write_text(line(500) + line(600))
        sensor = JsonLinesSensor(path, poll_interval=0.01)

        stream = sensor.subscribe()
        assert (await asyncio.wait_for(anext(stream), timeout=1)).cumulative == 600

        path.write_text(line(3))

        assert (await asyncio.wait_for(anext(stream), timeout=1)).cumulative == 3
        await stream.aclose()

    async def test_parse_line_keeps_timestamp(self) -> None:
        reading = JsonLinesSensor.parse_line(line(42, "2026-01-10T10:00:00+02:00"))

        assert reading is not None
        assert reading.cumulative == 42
        assert reading.observed_at.hour == 8
