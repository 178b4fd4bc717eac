"""Tests for the realtime outbox, event bus and room manager."""

import asyncio
import json

import pytest

from incident_hub.common.config import IncidentHubSettings
from incident_hub.common.database import DatabaseManager
from incident_hub.realtime.events import ADMIN_ROOM, EventBus, RealtimeEvent, publish, user_room
from incident_hub.realtime.manager import RoomManager, allowed_rooms


def make_settings(**overrides) -> IncidentHubSettings:
    defaults = {"db_url": "sqlite+aiosqlite://"}
    defaults.update(overrides)
    return IncidentHubSettings(**defaults)


class FakeSocket:
    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


@pytest.fixture
async def db():
    manager = DatabaseManager(make_settings())
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


class TestOutbox:
    async def test_released_after_commit(self, db):
        bus = EventBus(maxsize=10)
        db.on_commit(bus.publish_committed)
        async with db.get_session() as session:
            publish(session, ADMIN_ROOM, "incident:new", {"incidentId": "x"})
            assert bus.pending() == 0
        assert bus.pending() == 1
        event = await bus.get()
        assert event.room == ADMIN_ROOM
        assert event.to_message()["type"] == "incident:new"

    async def test_discarded_on_rollback(self, db):
        bus = EventBus(maxsize=10)
        db.on_commit(bus.publish_committed)
        with pytest.raises(ValueError):
            async with db.get_session() as session:
                publish(session, ADMIN_ROOM, "incident:new", {})
                raise ValueError("mutation failed")
        assert bus.pending() == 0

    async def test_full_queue_drops_without_raising(self):
        bus = EventBus(maxsize=1)
        bus.publish_committed([
            RealtimeEvent(room="r", event="a"),
            RealtimeEvent(room="r", event="b"),
        ])
        assert bus.pending() == 1
        assert bus.dropped == 1

    async def test_consumer_broadcasts(self):
        bus = EventBus(maxsize=10)
        manager = RoomManager()
        socket = FakeSocket()
        await manager.register("c1", socket, "u1", "USER")
        bus.start(manager)
        bus.publish_committed([RealtimeEvent(room=user_room("u1"), event="notification:new", data={"id": 1})])
        for _ in range(50):
            if socket.sent:
                break
            await asyncio.sleep(0.01)
        await bus.stop()
        assert socket.sent[0]["type"] == "notification:new"
        assert socket.sent[0]["data"] == {"id": 1}


class TestRooms:
    def test_allowed_rooms_by_role(self):
        assert allowed_rooms("u1", "USER") == {"user_u1"}
        assert allowed_rooms("u1", "ADMIN") == {"user_u1", "admin"}
        assert allowed_rooms("u1", "SUPER_ADMIN") == {"user_u1", "admin", "superadmin"}

    async def test_register_auto_joins(self):
        manager = RoomManager()
        conn = await manager.register("c1", FakeSocket(), "u1", "ADMIN")
        assert conn.rooms == {"user_u1", "admin"}
        assert manager.members("admin") == {"c1"}

    async def test_join_is_permission_checked(self):
        manager = RoomManager()
        await manager.register("c1", FakeSocket(), "u1", "USER")
        assert await manager.join("c1", "admin") is False
        assert await manager.join("c1", "user_u2") is False
        assert await manager.join("c1", "user_u1") is True

    async def test_failed_socket_is_dropped(self):
        manager = RoomManager()
        good, bad = FakeSocket(), FakeSocket(fail=True)
        await manager.register("c1", good, "u1", "ADMIN")
        await manager.register("c2", bad, "u2", "ADMIN")
        sent = await manager.send_to_room("admin", {"type": "incident:new"})
        assert sent == 1
        assert manager.connection_count == 1
        assert manager.members("admin") == {"c1"}

    async def test_disconnect_cleans_rooms(self):
        manager = RoomManager()
        await manager.register("c1", FakeSocket(), "u1", "USER")
        await manager.disconnect("c1")
        assert manager.connection_count == 0
        assert manager.members("user_u1") == set()
