"""
Realtime broadcaster: tracks open WebSocket connections and event rooms,
and fans JSON messages out to them.

DELIVERY MODEL
==============

Scopes:
  - global: every open connection
  - room:   connections that sent `join_room` for an event id

Delivery is best effort. Sends to a scope run concurrently, each bounded by
BROADCAST_SEND_TIMEOUT, so one stalled client cannot hold up the request
that triggered the message. A send that fails or times out marks the socket
dead and it is dropped from every room; the caller is never told. Mutating
endpoints call `publish` only after their write has been committed.

A single instance lives on `app.state.broadcaster` and reaches request
handlers through the `get_broadcaster` dependency.
"""

import asyncio
import uuid
from typing import Any, Optional, Protocol

from eventhub.core.config import get_settings
from eventhub.core.logging import get_logger
from eventhub.core.metrics import broadcast_failures, record_broadcast, websocket_connections

logger = get_logger(__name__)


class JSONSocket(Protocol):
    async def accept(self) -> None: ...

    async def send_json(self, data: Any) -> None: ...


class ConnectionManager:
    """Manages realtime connections and room membership."""

    def __init__(self, send_timeout: Optional[float] = None):
        self.send_timeout = send_timeout or get_settings().BROADCAST_SEND_TIMEOUT
        # {connection_id: websocket}
        self.active_connections: dict[str, JSONSocket] = {}
        # {event_id: {connection_id, ...}}
        self.rooms: dict[int, set[str]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: JSONSocket) -> str:
        """Accept the socket and register it. Returns its connection id."""
        await websocket.accept()
        return await self.register(websocket)

    async def register(self, websocket: JSONSocket) -> str:
        """Register an already-accepted socket."""
        connection_id = uuid.uuid4().hex[:12]
        async with self._lock:
            self.active_connections[connection_id] = websocket
        websocket_connections.inc()
        logger.info("ws_connected", connection_id=connection_id, total=len(self.active_connections))
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        """Forget a connection and remove it from every room."""
        async with self._lock:
            removed = self.active_connections.pop(connection_id, None)
            for event_id in list(self.rooms):
                members = self.rooms[event_id]
                members.discard(connection_id)
                if not members:
                    del self.rooms[event_id]
        if removed is not None:
            websocket_connections.dec()
            logger.info("ws_disconnected", connection_id=connection_id)

    async def join_room(self, connection_id: str, event_id: int) -> None:
        async with self._lock:
            if connection_id not in self.active_connections:
                return
            self.rooms.setdefault(event_id, set()).add(connection_id)
        logger.debug("ws_room_joined", connection_id=connection_id, event_id=event_id)

    async def leave_room(self, connection_id: str, event_id: int) -> None:
        async with self._lock:
            members = self.rooms.get(event_id)
            if members is None:
                return
            members.discard(connection_id)
            if not members:
                del self.rooms[event_id]
        logger.debug("ws_room_left", connection_id=connection_id, event_id=event_id)

    def room_members(self, event_id: int) -> set[str]:
        return set(self.rooms.get(event_id, set()))

    @property
    def connection_count(self) -> int:
        return len(self.active_connections)

    async def send(self, connection_id: str, message: dict) -> bool:
        """Send to one connection. Returns False (and drops the socket) on failure or timeout."""
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            return False
        try:
            await asyncio.wait_for(websocket.send_json(message), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            broadcast_failures.inc()
            logger.warning("ws_send_timeout", connection_id=connection_id, timeout=self.send_timeout)
            await self.disconnect(connection_id)
            return False
        except Exception as e:
            broadcast_failures.inc()
            logger.warning("ws_send_failed", connection_id=connection_id, error=str(e))
            await self.disconnect(connection_id)
            return False

    async def _deliver(self, connection_ids: list[str], message: dict) -> int:
        results = await asyncio.gather(*(self.send(connection_id, message) for connection_id in connection_ids))
        return sum(results)

    async def broadcast(self, message: dict) -> int:
        """Send to every connection. Returns the number of successful sends."""
        async with self._lock:
            connection_ids = list(self.active_connections)
        return await self._deliver(connection_ids, message)

    async def broadcast_to_room(self, event_id: int, message: dict) -> int:
        """Send to the connections in an event's room."""
        async with self._lock:
            connection_ids = list(self.rooms.get(event_id, set()))
        return await self._deliver(connection_ids, message)

    async def publish(self, message_type: str, data: dict, room: Optional[int] = None) -> int:
        """
        Wrap `data` as {"type": ..., "data": ...} and fan it out,
        to `room` when given, otherwise globally.
        """
        message = {"type": message_type, "data": data}
        if room is None:
            delivered = await self.broadcast(message)
            scope = "global"
        else:
            delivered = await self.broadcast_to_room(room, message)
            scope = "room"
        record_broadcast(message_type, scope)
        logger.info("broadcast_sent", type=message_type, scope=scope, room=room, delivered=delivered)
        return delivered


async def notify(
    broadcaster: ConnectionManager,
    message_type: str,
    data: dict,
    room: Optional[int] = None,
) -> None:
    """Publish without ever failing the caller."""
    try:
        await broadcaster.publish(message_type, data, room=room)
    except Exception as e:
        logger.error("broadcast_failed", type=message_type, room=room, error=str(e))
