"""Counter sources for stepkeeper.

This module provides:
- PushCounterSource / PollCounterSource: the interfaces the tracker consumes
- HealthProviderClient: httpx client for a health-data provider (poll)
- QueueSensor / JsonLinesSensor: push-style sensors
"""

from stepkeeper.sources.base import PollCounterSource, PushCounterSource
from stepkeeper.sources.provider import HealthProviderClient, parse_step_payload
from stepkeeper.sources.sensor import JsonLinesSensor, QueueSensor

__all__ = [
    "HealthProviderClient",
    "JsonLinesSensor",
    "PollCounterSource",
    "PushCounterSource",
    "QueueSensor",
    "parse_step_payload",
]
