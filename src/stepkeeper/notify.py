"""Tracking notifications.

Hosts that keep a background context alive usually show a persistent
notification while a session is open. stepkeeper does not present
anything itself; it tells a TrackingNotifier when tracking starts and
stops.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class TrackingNotifier(Protocol):
    """Receives tracking start/stop edges."""

    def tracking_started(self, title: str, content: str) -> None: ...

    def tracking_stopped(self) -> None: ...


class LogNotifier:
    """Default notifier: writes the notification to the log."""

    def tracking_started(self, title: str, content: str) -> None:
        logger.info("%s: %s", title, content)

    def tracking_stopped(self) -> None:
        logger.info("Step tracking stopped")
