"""Fire-and-forget fan-out of device change events to live subscribers.

Each subscriber owns a bounded queue. Publishing never blocks: when a
subscriber's queue is full its oldest pending event is dropped, so a slow
WebSocket client only loses its own history and never stalls the engine.
"""

import asyncio
import logging
from datetime import datetime

from pydantic import BaseModel

from netwatch.registry.models import DeviceStatus

logger = logging.getLogger(__name__)


class DeviceChangeEvent(BaseModel):
    """Normalized "device changed" event pushed to subscribers."""

    device_id: int
    status: DeviceStatus
    latency: int
    downtime_start: datetime | None
    observed_at: datetime


class Subscription:
    """A single subscriber's bounded event buffer."""

    def __init__(self, notifier: "ChangeNotifier", maxsize: int) -> None:
        self._notifier = notifier
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[DeviceChangeEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def offer(self, event: DeviceChangeEvent) -> None:
        """Schedule delivery on the subscriber's loop.

        Always goes through call_soon_threadsafe, even from the loop thread,
        so events keep publish order regardless of the publishing thread.
        """
        try:
            self._loop.call_soon_threadsafe(self._put, event)
        except RuntimeError:
            # Loop already closed; the subscriber is gone.
            self._notifier.unsubscribe(self)

    def _put(self, event: DeviceChangeEvent) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            logger.debug("Subscriber buffer full, dropped oldest event (total %d)", self.dropped)
        self._queue.put_nowait(event)

    async def get(self) -> DeviceChangeEvent:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._notifier.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> DeviceChangeEvent:
        return await self.get()


class ChangeNotifier:
    """Registry of live subscribers with a non-blocking publish."""

    def __init__(self, queue_size: int = 100) -> None:
        self.queue_size = queue_size
        self._subscribers: set[Subscription] = set()

    def subscribe(self) -> Subscription:
        """Register a new subscriber. Must be called from inside an event loop."""
        sub = Subscription(self, self.queue_size)
        self._subscribers.add(sub)
        logger.info("Subscriber connected (%d active)", len(self._subscribers))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.discard(sub)
            logger.info("Subscriber disconnected (%d active)", len(self._subscribers))

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: DeviceChangeEvent) -> None:
        """Broadcast an event to every current subscriber. Never blocks."""
        for sub in list(self._subscribers):
            sub.offer(event)
