"""Realtime WebSocket endpoint."""

import json
import uuid

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from incident_hub.audit.context import request_meta
from incident_hub.common.exceptions import IncidentHubError
from incident_hub.common.security import authenticate

router = APIRouter()


def _get_manager():
    from incident_hub.deps import get_room_manager
    return get_room_manager()


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: str | None = Query(None)):
    try:
        user = await authenticate(token, request_meta(websocket))
    except IncidentHubError as exc:
        await websocket.close(code=1008, reason=exc.message)
        return

    await websocket.accept()
    manager = _get_manager()
    connection_id = str(uuid.uuid4())
    conn = await manager.register(connection_id, websocket, user.id, user.role)
    await websocket.send_json({
        "type": "system:connected",
        "data": {"connectionId": connection_id, "rooms": sorted(conn.rooms)},
    })

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await websocket.send_json({"type": "system:error", "data": {"reason": "invalid json"}})
                continue
            kind = message.get("type") if isinstance(message, dict) else None
            if kind == "joinRoom":
                room = str(message.get("room", ""))
                joined = await manager.join(connection_id, room)
                await websocket.send_json({
                    "type": "system:joined" if joined else "system:error",
                    "data": {"room": room},
                })
            elif kind == "ping":
                await websocket.send_json({"type": "system:pong", "data": {}})
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(connection_id)
