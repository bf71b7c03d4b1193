from __future__ import annotations

"""Fire-and-forget fan-out of timer events to live subscribers.

Each subscriber owns a bounded queue.  ``publish`` never awaits: a full
queue drops that subscriber's copy, no subscribers means nothing happens.
This is not a delivery log; late or slow readers re-read current state.
"""

import asyncio
import logging
import uuid
from typing import Dict, Optional

from ctrlsys.events.base import EventBus
from ctrlsys.events.eventbus_model import TimerEvent
from ctrlsys.observability.prometheus_metrics import hub_events_dropped, stream_subscribers

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 100


class Subscription:
    """One subscriber's view of the hub; iterate it or call :meth:`get`."""

    def __init__(self, hub: "BroadcastHub", maxsize: int):
        self.id = uuid.uuid4().hex[:8]
        self._hub = hub
        self._queue: asyncio.Queue[TimerEvent] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def _offer(self, event: TimerEvent) -> bool:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    async def get(self, timeout: Optional[float] = None) -> Optional[TimerEvent]:
        """Next event, or ``None`` if ``timeout`` elapses first."""
        if timeout is None:
            return await self._queue.get()
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._hub.unsubscribe(self)
        # release buffered events
        while not self._queue.empty():
            self._queue.get_nowait()

    def __aiter__(self):
        return self

    async def __anext__(self) -> TimerEvent:
        if self.closed:
            raise StopAsyncIteration
        return await self._queue.get()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()


class BroadcastHub(EventBus):
    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE):
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        self.buffer_size = buffer_size
        self._subscribers: Dict[str, Subscription] = {}
        self.dropped = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """Receive every event published from now on (no history)."""
        sub = Subscription(self, self.buffer_size)
        self._subscribers[sub.id] = sub
        stream_subscribers.inc()
        logger.debug("[Hub] subscriber %s joined (total=%s)", sub.id, self.subscriber_count)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        if self._subscribers.pop(subscription.id, None) is not None:
            stream_subscribers.dec()
            logger.debug(
                "[Hub] subscriber %s left (total=%s)", subscription.id, self.subscriber_count
            )

    def publish(self, event: TimerEvent) -> int:
        delivered = 0
        for sub in list(self._subscribers.values()):
            if sub._offer(event):
                delivered += 1
            else:
                self.dropped += 1
                hub_events_dropped.inc()
                logger.debug(
                    "[Hub] buffer full, dropped %s for subscriber %s", event.event_type.value, sub.id
                )
        return delivered

    def clear(self) -> None:
        """Drop every subscriber (used on shutdown and in tests)."""
        for sub in list(self._subscribers.values()):
            sub.close()


