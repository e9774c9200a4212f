"""
Progress notifications.

Sessions publish progress events into a bounded queue without waiting;
one drain task delivers them to the registered sinks. A full queue drops
the event, and sink failures are logged, never raised back to indexing.
"""

import asyncio
import contextlib
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from loguru import logger

from chain_indexer.config.constants import (
    NOTIFICATION_BUFFER_PER_USER,
    NOTIFICATION_QUEUE_SIZE,
)
from chain_indexer.models.indexing import ProgressEvent

ClientCallback = Callable[[dict[str, Any]], Awaitable[None]]


class NotificationSink(Protocol):
    """Receives progress events."""

    async def send(self, event: ProgressEvent) -> None: ...


class LoggingSink:
    """Writes progress events to the log."""

    async def send(self, event: ProgressEvent) -> None:
        logger.info(
            f"[Progress] user={event.user_id} chunk {event.chunk}/{event.total} "
            f"({event.percent:.1f}%) block {event.current_block}/{event.target_block}, "
            f"{event.metrics.get('total_logs', 0)} logs"
        )


class BufferedSink:
    """
    Per-user client delivery.

    While a user has no connected client the last events are buffered
    and replayed on registration.
    """

    def __init__(self, buffer_size: int = NOTIFICATION_BUFFER_PER_USER) -> None:
        self.buffer_size = buffer_size
        self._clients: dict[str, ClientCallback] = {}
        self._buffers: dict[str, deque[dict[str, Any]]] = {}

    async def register_client(self, user_id: str, callback: ClientCallback) -> int:
        """
        Attach a client and flush buffered events to it.

        Returns:
            Number of buffered events delivered
        """
        self._clients[user_id] = callback
        buffered = self._buffers.pop(user_id, deque())
        for message in buffered:
            await callback(message)
        logger.debug(f"[Notifications] Client registered for {user_id}, flushed {len(buffered)}")
        return len(buffered)

    def unregister_client(self, user_id: str) -> None:
        self._clients.pop(user_id, None)

    def get_buffered(self, user_id: str) -> list[dict[str, Any]]:
        return list(self._buffers.get(user_id, ()))

    @property
    def connected_clients(self) -> int:
        return len(self._clients)

    async def send(self, event: ProgressEvent) -> None:
        message = event.to_dict()
        client = self._clients.get(event.user_id)
        if client is None:
            buffer = self._buffers.setdefault(event.user_id, deque(maxlen=self.buffer_size))
            buffer.append(message)
            return
        await client(message)


class ProgressNotifier:
    """Bounded fire-and-forget fan-out of progress events."""

    def __init__(
        self,
        sinks: list[NotificationSink] | None = None,
        max_queue_size: int = NOTIFICATION_QUEUE_SIZE,
    ) -> None:
        self.sinks: list[NotificationSink] = list(sinks or [])
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=max_queue_size)
        self._task: asyncio.Task | None = None
        self.published = 0
        self.delivered = 0
        self.dropped = 0
        self.failed = 0

    def add_sink(self, sink: NotificationSink) -> None:
        self.sinks.append(sink)

    def publish(self, event: ProgressEvent) -> bool:
        """
        Enqueue an event without blocking.

        Returns:
            False if the queue was full and the event was dropped
        """
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(
                    f"[Notifications] Queue full, dropped {self.dropped} events so far"
                )
            return False
        self.published += 1
        return True

    async def _deliver(self, event: ProgressEvent) -> None:
        for sink in self.sinks:
            try:
                await sink.send(event)
                self.delivered += 1
            except Exception as e:
                self.failed += 1
                logger.warning(
                    f"[Notifications] {type(sink).__name__} failed for "
                    f"{event.user_id}: {e}"
                )

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    def _on_drain_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[Notifications] Drain task crashed: {exc}")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._drain(), name="progress-notifier")
        self._task.add_done_callback(self._on_drain_done)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def flush(self, timeout: float = 5.0) -> bool:
        """
        Wait until queued events are delivered.

        Returns:
            True if the queue drained within the timeout
        """
        if not self.running:
            return self._queue.empty()
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except TimeoutError:
            logger.warning(f"[Notifications] {self.pending} events undelivered after {timeout}s")
            return False
        return True

    async def close(self, timeout: float = 5.0) -> None:
        await self.flush(timeout)
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "pending": self.pending,
            "published": self.published,
            "delivered": self.delivered,
            "dropped": self.dropped,
            "failed": self.failed,
            "sinks": len(self.sinks),
        }
