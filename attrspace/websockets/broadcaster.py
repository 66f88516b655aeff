"""
Bridge from the notification bus to WebSocket clients.

Bus callbacks run on the publisher's hot path, so the broadcaster's callbacks
only serialize the event and enqueue it. A background task drains the queue
and performs the network I/O through the ConnectionManager.
"""

import asyncio
import logging
from contextlib import suppress
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from attrspace.events.bus import NotificationBus
from attrspace.events.models import ChangeEvent, EventKind
from attrspace.websockets.manager import ConnectionManager

logger = logging.getLogger(__name__)

MESSAGE_TYPES = {
    EventKind.ENTITY: "attributeChange",
    EventKind.RELATION: "relationChange",
    EventKind.SCHEMA: "schemaChange",
}


def build_message(message_type: str, event: ChangeEvent) -> Dict[str, Any]:
    """Wrap a change event in the wire envelope sent to clients."""
    return {
        "type": message_type,
        "data": event.to_message(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class ChangeBroadcaster:
    """
    Forwards bus notifications to WebSocket connections.

    Args:
        bus: Bus to subscribe on
        manager: Connection manager performing the sends
        max_queue: Maximum queued messages; overflow is dropped and counted
    """

    def __init__(self, bus: NotificationBus, manager: ConnectionManager, max_queue: int = 1000):
        self._bus = bus
        self._manager = manager
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._subscription_ids: List[str] = []
        self._worker_task: Optional[asyncio.Task] = None
        self._running = False

        self._total_enqueued = 0
        self._total_sent = 0
        self._total_dropped = 0
        self._total_errors = 0

    def attach(self) -> List[str]:
        """Subscribe to entity, relation and schema events."""
        if self._subscription_ids:
            return list(self._subscription_ids)

        for kind, message_type in MESSAGE_TYPES.items():
            self._subscription_ids.append(
                self._bus.subscribe({"type": kind.value}, self._enqueuer(message_type))
            )
        logger.info(f"ChangeBroadcaster attached: {self._subscription_ids}")
        return list(self._subscription_ids)

    def detach(self) -> None:
        for subscription_id in self._subscription_ids:
            self._bus.unsubscribe(subscription_id)
        self._subscription_ids = []

    def _enqueuer(self, message_type: str):
        def enqueue(event: ChangeEvent) -> None:
            try:
                self._queue.put_nowait(build_message(message_type, event))
            except asyncio.QueueFull:
                self._total_dropped += 1
                logger.warning(
                    f"Broadcast queue full, dropping {message_type}",
                    extra={"entity_id": event.entity_id},
                )
                return
            self._total_enqueued += 1

        enqueue.__name__ = f"enqueue_{message_type}"
        return enqueue

    async def _deliver(self, message: Dict[str, Any]) -> None:
        try:
            await self._manager.broadcast(message)
            self._total_sent += 1
        except Exception as e:
            self._total_errors += 1
            logger.error(f"Broadcast failed for {message.get('type')}: {e}", exc_info=True)

    async def _worker(self) -> None:
        logger.info("ChangeBroadcaster worker started")
        while True:
            message = await self._queue.get()
            try:
                await self._deliver(message)
            finally:
                self._queue.task_done()

    async def start(self) -> None:
        """
        Attach to the bus and start the delivery worker.

        Call this during application startup.
        """
        if self._running:
            logger.warning("ChangeBroadcaster already running")
            return

        self.attach()
        self._running = True
        self._worker_task = asyncio.create_task(self._worker())
        logger.info("ChangeBroadcaster started")

    async def stop(self) -> None:
        """
        Detach from the bus, deliver queued messages and stop the worker.

        Call this during application shutdown.
        """
        self.detach()

        if self._running:
            await self._queue.join()
            self._running = False

        if self._worker_task is not None:
            self._worker_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._worker_task
            self._worker_task = None

        while not self._queue.empty():
            message = self._queue.get_nowait()
            await self._deliver(message)
            self._queue.task_done()

        logger.info("ChangeBroadcaster stopped")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_enqueued": self._total_enqueued,
            "total_sent": self._total_sent,
            "total_dropped": self._total_dropped,
            "total_errors": self._total_errors,
            "pending_messages": self._queue.qsize(),
            "running": self._running,
        }
