# File: app/services/events.py
"""Publish/subscribe for live issue updates.

One EventBroker is created per application (see app.main lifespan) and handed to the
scheduler and the request layer. Subscribers are asyncio consumers (the /live-feed
stream); publishers may be request handlers or the sweep threads.
"""
import asyncio
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


class Subscription:
    def __init__(self, loop: asyncio.AbstractEventLoop, maxsize: int = 100):
        self._loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def _offer(self, event: dict):
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1

    def deliver(self, event: dict):
        self._loop.call_soon_threadsafe(self._offer, event)

    async def get(self, timeout: Optional[float] = None) -> Optional[dict]:
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None


class EventBroker:
    def __init__(self):
        self._lock = threading.Lock()
        self._subs: set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def subscribe(self) -> Subscription:
        sub = Subscription(asyncio.get_running_loop())
        with self._lock:
            self._subs.add(sub)
        logger.info("Live feed client connected. Total: %d", self.subscriber_count)
        return sub

    def unsubscribe(self, sub: Subscription):
        with self._lock:
            self._subs.discard(sub)
        logger.info("Live feed client disconnected. Total: %d", self.subscriber_count)

    @contextmanager
    def subscription(self) -> Iterator[Subscription]:
        sub = self.subscribe()
        try:
            yield sub
        finally:
            self.unsubscribe(sub)

    def publish(self, event_type: str, **payload):
        event = {"type": event_type, "ts": datetime.now(timezone.utc).isoformat(), **payload}
        with self._lock:
            subs = list(self._subs)
        for sub in subs:
            try:
                sub.deliver(event)
            except RuntimeError:
                # the subscriber's loop is gone
                self.unsubscribe(sub)


def publish(broker: Optional[EventBroker], event_type: str, **payload):
    """Publish when a broker is wired in; services run without one in scripts and tests."""
    if broker is not None:
        broker.publish(event_type, **payload)
