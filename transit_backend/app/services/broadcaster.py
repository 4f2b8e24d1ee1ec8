"""
Tracking update fan-out.

The write path hands updates over with `publish()`, which never blocks and
never raises. A single dispatcher task drains the bounded queue and
delivers each update to:

1. local WebSocket subscribers (`route:<id>` and `all`), each with its own
   bounded queue so one slow client cannot hold up the others
2. Redis pub/sub channels `<prefix>:route:<id>` and `<prefix>:all`, through
   a circuit breaker and a per-call timeout

Delivery is best-effort and at-most-once. Anything that cannot be
delivered is logged and dropped.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Dict, Optional, Set

from transit_backend.app.core.config import settings
from transit_backend.app.core.redis_client import get_redis
from transit_backend.app.core.reliability import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)

ALL_CHANNEL = "all"


def route_channel(route_id: int) -> str:
    return f"route:{route_id}"


class TrackingBroadcaster:
    """
    In-process pub/sub hub with an external Redis mirror.

    Queues are created in `start()` so they bind to the running event loop.
    """

    def __init__(
        self,
        queue_size: Optional[int] = None,
        subscriber_queue_size: Optional[int] = None,
        publish_timeout: Optional[float] = None,
        channel_prefix: Optional[str] = None,
    ):
        self.queue_size = queue_size or settings.broadcast_queue_size
        self.subscriber_queue_size = subscriber_queue_size or settings.subscriber_queue_size
        self.publish_timeout = publish_timeout or settings.broadcast_publish_timeout_seconds
        self.channel_prefix = channel_prefix or settings.broadcast_channel_prefix

        self.breaker = CircuitBreaker("tracking-redis-publish", failure_threshold=5, reset_timeout=30)

        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._subscribers: Dict[str, Set[asyncio.Queue]] = {}
        self._watermarks: Dict[str, datetime] = {}

        self.dropped = 0
        self.dispatched = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._watermarks = {}
        self._task = asyncio.create_task(self._dispatch_loop(), name="tracking-broadcaster")
        logger.info("Tracking broadcaster started (queue size %d)", self.queue_size)

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._queue = None
        logger.info("Tracking broadcaster stopped (dispatched=%d, dropped=%d)", self.dispatched, self.dropped)

    def publish(self, update: dict) -> bool:
        """
        Enqueue an update for delivery without waiting for it.

        Returns False when the update was dropped (queue full or dispatcher
        not running).
        """
        if not self.running or self._queue is None:
            self.dropped += 1
            logger.warning("Broadcaster not running, dropping update for vehicle %s", update.get("vehicleId"))
            return False
        try:
            self._queue.put_nowait(update)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Broadcast queue full, dropping update for vehicle %s", update.get("vehicleId"))
            return False
        return True

    def subscribe(self, route_id: Optional[int] = None) -> asyncio.Queue:
        """Register a subscriber for one route, or for every route when route_id is None."""
        channel = route_channel(route_id) if route_id is not None else ALL_CHANNEL
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.subscriber_queue_size)
        self._subscribers.setdefault(channel, set()).add(queue)
        logger.debug("Subscriber added to %s", channel)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        for channel, queues in list(self._subscribers.items()):
            queues.discard(queue)
            if not queues:
                del self._subscribers[channel]

    def subscriber_count(self, route_id: Optional[int] = None) -> int:
        if route_id is None:
            return sum(len(q) for q in self._subscribers.values())
        return len(self._subscribers.get(route_channel(route_id), ()))

    async def _dispatch_loop(self):
        while True:
            update = await self._queue.get()
            try:
                await self._dispatch(update)
            except Exception:
                logger.exception("Failed to dispatch tracking update")
            finally:
                self._queue.task_done()

    async def drain(self):
        """Wait until everything enqueued so far has been dispatched."""
        if self._queue is not None and self.running:
            await self._queue.join()

    def _is_stale(self, update: dict) -> bool:
        vehicle_id = update.get("vehicleId")
        raw_ts = update.get("timestamp")
        if vehicle_id is None or raw_ts is None:
            return False
        ts = datetime.fromisoformat(raw_ts) if isinstance(raw_ts, str) else raw_ts

        last = self._watermarks.get(vehicle_id)
        if last is not None and ts < last:
            return True
        self._watermarks[vehicle_id] = ts
        return False

    async def _dispatch(self, update: dict):
        if self._is_stale(update):
            logger.debug("Dropping out-of-order update for vehicle %s", update.get("vehicleId"))
            return

        route_id = update.get("routeId")
        channels = [ALL_CHANNEL]
        if route_id is not None:
            channels.insert(0, route_channel(route_id))

        for channel in channels:
            for queue in list(self._subscribers.get(channel, ())):
                try:
                    queue.put_nowait(update)
                except asyncio.QueueFull:
                    logger.warning("Subscriber queue full on %s, dropping update", channel)

        message = json.dumps(update, default=str)
        for channel in channels:
            await self._publish_external(f"{self.channel_prefix}:{channel}", message)

        self.dispatched += 1

    async def _publish_external(self, channel: str, message: str):
        client = await get_redis()

        async def _send():
            return await asyncio.wait_for(client.publish(channel, message), timeout=self.publish_timeout)

        try:
            await self.breaker.call(_send)
        except CircuitOpenError:
            logger.debug("Redis publish skipped for %s: circuit open", channel)
        except Exception as e:
            logger.warning("Redis publish to %s failed: %s", channel, e)


broadcaster = TrackingBroadcaster()
