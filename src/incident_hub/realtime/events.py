"""Outbound realtime events and the bus that carries them to the broadcaster.

Services stage events on their database session; the database manager
hands them to the bus only after the transaction commits. A consumer task
drains the bus into the room manager. Nothing on this path can fail the
mutation that produced the event.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from incident_hub.common.database import stage_after_commit
from incident_hub.common.logging import get_logger

logger = get_logger("realtime")

ADMIN_ROOM = "admin"
SUPER_ADMIN_ROOM = "superadmin"


def user_room(user_id: str) -> str:
    return f"user_{user_id}"


@dataclass
class RealtimeEvent:
    room: str
    event: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_message(self) -> dict[str, Any]:
        return {"type": self.event, "timestamp": self.timestamp, "data": self.data}


def publish(session: AsyncSession, room: str, event: str, data: dict[str, Any]) -> None:
    """Stage an event for delivery once ``session`` commits."""
    stage_after_commit(session, RealtimeEvent(room=room, event=event, data=data))


class EventBus:
    """Bounded queue between committed transactions and the broadcaster."""

    def __init__(self, maxsize: int = 1000):
        self._queue: asyncio.Queue[RealtimeEvent] = asyncio.Queue(maxsize=maxsize)
        self._consumer: asyncio.Task | None = None
        self.dropped = 0

    def publish_committed(self, items: list) -> None:
        """After-commit hook: enqueue without waiting, drop when full."""
        for item in items:
            if not isinstance(item, RealtimeEvent):
                continue
            try:
                self._queue.put_nowait(item)
            except asyncio.QueueFull:
                self.dropped += 1
                logger.warning(
                    "Realtime queue full, dropped %s for %s", item.event, item.room,
                    extra={"room": item.room, "event": item.event},
                )

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> RealtimeEvent:
        return await self._queue.get()

    def start(self, manager) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._drain(manager))

    async def stop(self) -> None:
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

    async def _drain(self, manager) -> None:
        while True:
            event = await self._queue.get()
            try:
                await manager.send_to_room(event.room, event.to_message())
            except Exception:
                logger.exception("Broadcast of %s to %s failed", event.event, event.room)
            finally:
                self._queue.task_done()
