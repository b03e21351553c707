"""In-process notification bus.

``publish()`` is a non-blocking hot path: it drops the notification onto a
bounded ``asyncio.Queue`` and returns immediately.  A single worker task
fans each notification out to the handlers subscribed to its topic.  A
failing handler is logged and does not affect other handlers or the
publisher.

Topics emitted by the service:

  calendar.synced   {"user_id", "total_events", "conflict_count"}
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

CALENDAR_SYNCED = "calendar.synced"

NotificationHandler = Callable[["Notification"], Awaitable[None]]


@dataclass(frozen=True)
class Notification:
    topic: str
    payload: dict[str, Any]
    published_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class EventBus:
    """Bounded, fire-and-forget publish/subscribe channel."""

    def __init__(self, *, queue_capacity: int = 1000) -> None:
        self._queue: asyncio.Queue[Notification] = asyncio.Queue(maxsize=queue_capacity)
        self._handlers: dict[str, list[NotificationHandler]] = defaultdict(list)
        self._worker_task: asyncio.Task | None = None
        self._running = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def subscribe(self, topic: str, handler: NotificationHandler) -> None:
        self._handlers[topic].append(handler)

    def publish(self, topic: str, payload: dict[str, Any]) -> bool:
        """Queue a notification.  Returns False (and logs) when the queue is full."""
        try:
            self._queue.put_nowait(Notification(topic=topic, payload=dict(payload)))
        except asyncio.QueueFull:
            logger.warning("EventBus queue full; dropping %s notification", topic)
            return False
        return True

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._worker_task = asyncio.create_task(self._worker_loop(), name="event-bus-worker")
        logger.info("EventBus started: queue_capacity=%d", self._queue.maxsize)

    async def stop(self, drain_timeout_s: float = 5.0) -> None:
        """Drain outstanding notifications up to *drain_timeout_s*, then stop the worker."""
        if not self._running:
            return
        self._running = False

        if drain_timeout_s > 0 and not self._queue.empty():
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout_s)
            except TimeoutError:
                logger.warning(
                    "EventBus drain timed out after %.1fs; %d notifications dropped",
                    drain_timeout_s,
                    self._queue.qsize(),
                )

        if self._worker_task is not None:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None
        logger.info("EventBus stopped")

    async def _dispatch(self, notification: Notification) -> None:
        for handler in list(self._handlers.get(notification.topic, ())):
            try:
                await handler(notification)
            except Exception:
                logger.exception("EventBus handler failed for topic=%s", notification.topic)

    async def _worker_loop(self) -> None:
        while True:
            notification = await self._queue.get()
            try:
                await self._dispatch(notification)
            finally:
                self._queue.task_done()
