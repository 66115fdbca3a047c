"""Broadcast of tracker snapshots to subscribers.

Each subscription holds at most one undelivered snapshot. A slow consumer
therefore skips intermediate states but always receives the latest one on
its next read. Nothing is published until the emitter is opened (after
engine initialization), and nothing is delivered after it is closed.

Subscriptions are held weakly: a consumer that stops iterating without
calling ``aclose`` is dropped once its subscription is garbage collected.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stepkeeper.models import StepSnapshot

logger = logging.getLogger(__name__)


class UpdateSubscription:
    """Async iterator over snapshots for one subscriber.

    Example:
        >>> async for snapshot in tracker.subscribe_updates():
        ...     print(snapshot.total_steps)
    """

    def __init__(self, emitter: UpdateEmitter) -> None:
        self._emitter = emitter
        self._pending: StepSnapshot | None = None
        self._wakeup = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, snapshot: StepSnapshot) -> None:
        """Replace the pending snapshot with ``snapshot``."""
        if self._closed:
            return
        self._pending = snapshot
        self._wakeup.set()

    def close(self) -> None:
        """End the iteration, dropping any undelivered snapshot."""
        self._closed = True
        self._pending = None
        self._wakeup.set()

    async def aclose(self) -> None:
        """Unsubscribe from the emitter and end the iteration."""
        self._emitter.unsubscribe(self)
        self.close()

    def __aiter__(self) -> UpdateSubscription:
        return self

    async def __anext__(self) -> StepSnapshot:
        while True:
            if self._closed:
                raise StopAsyncIteration
            if self._pending is not None:
                snapshot = self._pending
                self._pending = None
                self._wakeup.clear()
                return snapshot
            self._wakeup.clear()
            await self._wakeup.wait()


class UpdateEmitter:
    """Publish-only broadcast of StepSnapshot values."""

    def __init__(self) -> None:
        self._subscriptions: weakref.WeakSet[UpdateSubscription] = weakref.WeakSet()
        self._latest: StepSnapshot | None = None
        self._open = False
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._open and not self._closed

    @property
    def latest(self) -> StepSnapshot | None:
        """Most recently published snapshot."""
        return self._latest

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def open(self) -> None:
        """Allow publishing. Called once initialization has completed."""
        if not self._closed:
            self._open = True

    def publish(self, snapshot: StepSnapshot) -> int:
        """Offer ``snapshot`` to every subscriber.

        Returns:
            Number of subscribers offered the snapshot (0 if not open)
        """
        if not self.is_open:
            return 0
        self._latest = snapshot
        subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.offer(snapshot)
        return len(subscriptions)

    def subscribe(self) -> UpdateSubscription:
        """Create a subscription primed with the latest snapshot, if any.

        Subscribing to a closed emitter yields an already finished iterator.
        """
        subscription = UpdateSubscription(self)
        if self._closed:
            subscription.close()
            return subscription
        if self._latest is not None and self._open:
            subscription.offer(self._latest)
        self._subscriptions.add(subscription)
        return subscription

    def unsubscribe(self, subscription: UpdateSubscription) -> None:
        self._subscriptions.discard(subscription)

    def close(self) -> None:
        """End all subscriptions. Idempotent."""
        if self._closed:
            return
        self._closed = True
        subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.close()
        count = len(subscriptions)
        self._subscriptions.clear()
        logger.debug("Update emitter closed (%d subscriptions ended)", count)
