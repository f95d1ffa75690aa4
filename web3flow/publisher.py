"""
Live-update fan-out to connected viewers.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class UpdateType(str, Enum):
    WORKFLOW_EXECUTED = "WORKFLOW_EXECUTED"
    WORKFLOW_TOGGLED = "WORKFLOW_TOGGLED"
    WORKFLOW_DELETED = "WORKFLOW_DELETED"
    WORKFLOW_UPDATED = "WORKFLOW_UPDATED"
    ALERT_TRIGGERED = "ALERT_TRIGGERED"


@dataclass
class UpdateEvent:
    """A typed live-update message."""

    type: UpdateType
    payload: dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_message(self) -> dict[str, Any]:
        """Wire form sent to viewers."""
        return {"type": self.type.value, "payload": self.payload}


class LiveUpdatePublisher:
    """
    Best-effort broadcaster.

    Each subscriber gets its own bounded queue. A full queue drops the event
    for that subscriber only; there is no acknowledgment.
    """

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: list[asyncio.Queue] = []
        self.published_count = 0

    def subscribe(self) -> asyncio.Queue:
        """Register a viewer and return the queue its events arrive on."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: UpdateEvent) -> int:
        """
        Broadcast an event to every subscriber.

        Returns:
            Number of subscribers the event was queued for
        """
        delivered = 0
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Dropping {event.type.value} for a slow subscriber")
        self.published_count += 1
        logger.debug(f"Published {event.type.value} to {delivered} subscriber(s)")
        # Let subscriber tasks run
        await asyncio.sleep(0)
        return delivered

    async def workflow_executed(
        self, workflow_id: str, execution_count: int, last_triggered: Optional[datetime]
    ) -> int:
        return await self.publish(
            UpdateEvent(
                type=UpdateType.WORKFLOW_EXECUTED,
                payload={
                    "workflowId": workflow_id,
                    "executionCount": execution_count,
                    "lastTriggered": last_triggered.isoformat() if last_triggered else None,
                },
            )
        )
