"""
WebSocket endpoint for the realtime channel.

Client connects with: ws://host/api/v1/ws[?token=JWT]

Client -> server:
  "ping"                                                  -> {"type": "pong"}
  {"action": "join_room",  "event_id": 1}                 -> {"type": "room_joined", "event_id": 1}
  {"action": "leave_room", "event_id": 1}                 -> {"type": "room_left", "event_id": 1}
  {"action": "message", "event_id": 1, "message": "hi"}   -> relayed to room 1

Server -> client pushes:
  {"type": "attendee_changed", "data": {"event_id", "attendees", "attendees_count"}}
  {"type": "event_created" | "event_updated" | "event_deleted", "data": {...}}
"""

import json
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from eventhub.api.deps import get_broadcaster
from eventhub.core.exceptions import UnauthenticatedError
from eventhub.core.logging import get_logger
from eventhub.core.security import Identity, decode_access_token
from eventhub.schemas.realtime import ClientMessage
from eventhub.services.realtime import ConnectionManager

logger = get_logger(__name__)
router = APIRouter(tags=["Realtime"])


async def _handle_client_message(
    broadcaster: ConnectionManager,
    connection_id: str,
    identity: Optional[Identity],
    raw: str,
) -> None:
    try:
        msg = ClientMessage.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError):
        await broadcaster.send(connection_id, {"type": "error", "message": "Invalid message"})
        return

    if msg.action == "join_room":
        await broadcaster.join_room(connection_id, msg.event_id)
        await broadcaster.send(connection_id, {"type": "room_joined", "event_id": msg.event_id})
    elif msg.action == "leave_room":
        await broadcaster.leave_room(connection_id, msg.event_id)
        await broadcaster.send(connection_id, {"type": "room_left", "event_id": msg.event_id})
    else:
        if not msg.message:
            await broadcaster.send(connection_id, {"type": "error", "message": "Empty message"})
            return
        sender = identity.username if identity else connection_id
        await broadcaster.publish(
            "message",
            {"event_id": msg.event_id, "sender": sender, "message": msg.message},
            room=msg.event_id,
        )


@router.websocket("/ws")
async def realtime_channel(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    broadcaster: ConnectionManager = Depends(get_broadcaster),
):
    identity = None
    if token:
        try:
            identity = decode_access_token(token)
        except UnauthenticatedError:
            logger.warning("ws_auth_failed")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

    connection_id = await broadcaster.connect(websocket)
    try:
        await websocket.send_json({"type": "connected", "connection_id": connection_id})
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", status.WS_1000_NORMAL_CLOSURE))
            raw = frame.get("text")
            if raw is None:
                # Binary frame
                raw = (frame.get("bytes") or b"").decode("utf-8", errors="replace")
            if raw == "ping":
                await websocket.send_json({"type": "pong"})
                continue
            await _handle_client_message(broadcaster, connection_id, identity, raw)
    except WebSocketDisconnect:
        logger.info("ws_client_closed", connection_id=connection_id)
    finally:
        await broadcaster.disconnect(connection_id)
