"""WebSocket room manager.

Connections join named rooms (``user_<id>``, ``admin``, ``superadmin``);
events are pushed to every connection in a room. Delivery is best effort:
a connection whose send fails is dropped and the broadcast continues.
"""

import asyncio
import json
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

from incident_hub.common.logging import get_logger
from incident_hub.realtime.events import ADMIN_ROOM, SUPER_ADMIN_ROOM, user_room
from incident_hub.users.models import ELEVATED_ROLES, Role

logger = get_logger("realtime.manager")


def allowed_rooms(user_id: str, role: str) -> set[str]:
    """Rooms a connection for this account may join."""
    rooms = {user_room(user_id)}
    if Role(role) in ELEVATED_ROLES:
        rooms.add(ADMIN_ROOM)
    if role == Role.SUPER_ADMIN.value:
        rooms.add(SUPER_ADMIN_ROOM)
    return rooms


@dataclass
class Connection:
    id: str
    websocket: Any
    user_id: str
    role: str
    rooms: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RoomManager:
    """Tracks live connections and their room memberships."""

    def __init__(self):
        self._connections: dict[str, Connection] = {}
        self._rooms: dict[str, set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def members(self, room: str) -> set[str]:
        return set(self._rooms.get(room, ()))

    async def register(
        self, connection_id: str, websocket: WebSocket, user_id: str, role: str,
    ) -> Connection:
        """Track an accepted socket and join the rooms its role implies."""
        conn = Connection(id=connection_id, websocket=websocket, user_id=user_id, role=role)
        async with self._lock:
            self._connections[connection_id] = conn
            for room in allowed_rooms(user_id, role):
                conn.rooms.add(room)
                self._rooms[room].add(connection_id)
        logger.info(
            "WebSocket connected: %s user=%s rooms=%s (total: %d)",
            connection_id, user_id, sorted(conn.rooms), len(self._connections),
        )
        return conn

    async def join(self, connection_id: str, room: str) -> bool:
        """Join ``room`` if the connection's role permits it."""
        async with self._lock:
            conn = self._connections.get(connection_id)
            if conn is None or room not in allowed_rooms(conn.user_id, conn.role):
                return False
            conn.rooms.add(room)
            self._rooms[room].add(connection_id)
        return True

    async def disconnect(self, connection_id: str) -> None:
        async with self._lock:
            conn = self._connections.pop(connection_id, None)
            if conn is None:
                return
            for room in conn.rooms:
                members = self._rooms.get(room)
                if members is not None:
                    members.discard(connection_id)
                    if not members:
                        del self._rooms[room]
        logger.info(
            "WebSocket disconnected: %s (remaining: %d)",
            connection_id, len(self._connections),
        )

    async def send_to_room(self, room: str, message: dict[str, Any]) -> int:
        """Push ``message`` to every member of ``room``; returns deliveries."""
        async with self._lock:
            targets = [
                self._connections[cid]
                for cid in self._rooms.get(room, ())
                if cid in self._connections
            ]

        payload = json.dumps(message, default=str)
        sent = 0
        failed: list[str] = []
        for conn in targets:
            try:
                await conn.websocket.send_text(payload)
                sent += 1
            except Exception as exc:
                logger.error("Failed to send to %s: %s", conn.id, exc)
                failed.append(conn.id)

        for conn_id in failed:
            await self.disconnect(conn_id)
        return sent
