"""
Connection and Room Manager
===========================

Owns every live WebSocket connection and the two room namespaces:

    user:<userId>                 all connections of one user
    conversation:<conversationId> connections viewing a conversation

Sends to a single connection are serialised by a per-connection lock so
events reach each subscriber in emission order.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from fastapi import WebSocket, status

from ..models import Identity, utcnow
from .protocol import CONVERSATION_ROOM_PREFIX, build_envelope

logger = logging.getLogger("blueprint_realtime.realtime.connections")


@dataclass(eq=False)
class Connection:
    """One live transport-level link from a client."""
    websocket: WebSocket
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    identity: Optional[Identity] = None
    connected_at: datetime = field(default_factory=utcnow)
    rooms: Set[str] = field(default_factory=set)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def user_id(self) -> Optional[str]:
        return self.identity.user_id if self.identity else None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None


class ConnectionManager:
    """
    Manages WebSocket connections and room subscriptions.

    Attributes:
        connections: connection id -> Connection
        rooms: room name -> set of connection ids
    """

    def __init__(self):
        self.connections: Dict[str, Connection] = {}
        self.rooms: Dict[str, Set[str]] = defaultdict(set)
        self.lock = asyncio.Lock()

    async def register(self, connection: Connection) -> None:
        async with self.lock:
            self.connections[connection.id] = connection

        logger.info(
            "WebSocket connected",
            extra={
                "connection_id": connection.id,
                "user_id": connection.user_id,
                "total_connections": len(self.connections)
            }
        )

    async def unregister(self, connection_id: str) -> Optional[Connection]:
        """Remove a connection and drop it from every room it joined."""
        async with self.lock:
            connection = self.connections.pop(connection_id, None)
            if connection is None:
                return None

            for room in connection.rooms:
                members = self.rooms.get(room)
                if members is not None:
                    members.discard(connection_id)
                    if not members:
                        del self.rooms[room]
            rooms = list(connection.rooms)
            connection.rooms.clear()

        logger.info(
            "WebSocket disconnected",
            extra={
                "connection_id": connection_id,
                "user_id": connection.user_id,
                "rooms": rooms,
                "total_connections": len(self.connections)
            }
        )
        return connection

    async def join(self, connection: Connection, room: str) -> bool:
        async with self.lock:
            if connection.id not in self.connections:
                return False
            self.rooms[room].add(connection.id)
            connection.rooms.add(room)

        logger.debug(f"Connection {connection.id} joined {room}", extra={"room_size": len(self.rooms.get(room, ()))})
        return True

    async def leave(self, connection: Connection, room: str) -> bool:
        async with self.lock:
            members = self.rooms.get(room)
            if members is not None:
                members.discard(connection.id)
                if not members:
                    del self.rooms[room]
            left = room in connection.rooms
            connection.rooms.discard(room)

        if left:
            logger.debug(f"Connection {connection.id} left {room}")
        return left

    def room_members(self, room: str) -> List[str]:
        return list(self.rooms.get(room, ()))

    def count_rooms(self, prefix: str = CONVERSATION_ROOM_PREFIX) -> int:
        return sum(1 for room in self.rooms if room.startswith(prefix))

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    async def send(self, connection: Connection, event: str, data: Any = None) -> bool:
        """
        Send one event to one connection.

        Returns:
            bool: False if the transport rejected the frame
        """
        return await self._send_message(connection, build_envelope(event, data))

    async def _send_message(self, connection: Connection, message: Dict[str, Any]) -> bool:
        try:
            async with connection.send_lock:
                await connection.websocket.send_json(message)
            return True
        except Exception as e:
            logger.warning(
                f"Failed to send to WebSocket: {str(e)}",
                extra={"connection_id": connection.id, "event_type": message.get("type")}
            )
            return False

    async def emit_to_connections(
        self,
        connection_ids: Iterable[str],
        event: str,
        data: Any = None,
        exclude: Optional[str] = None,
    ) -> int:
        message = build_envelope(event, data)
        sent_count = 0

        for connection_id in connection_ids:
            if connection_id == exclude:
                continue
            connection = self.connections.get(connection_id)
            if connection is None:
                continue
            if await self._send_message(connection, message):
                sent_count += 1

        return sent_count

    async def emit_to_room(self, room: str, event: str, data: Any = None, exclude: Optional[str] = None) -> int:
        """
        Broadcast an event to every connection in a room.

        Args:
            room: room name
            event: server-to-client event name
            data: payload (pydantic models are serialised)
            exclude: optional connection id to skip (the emitter)

        Returns:
            int: Number of connections that received the event
        """
        async with self.lock:
            subscribers = list(self.rooms.get(room, ()))

        if not subscribers:
            logger.debug(f"No subscribers for room {room}")
            return 0

        sent_count = await self.emit_to_connections(subscribers, event, data, exclude=exclude)

        logger.debug(
            "Broadcast event",
            extra={"room": room, "event_type": event, "recipients": sent_count}
        )
        return sent_count

    async def close_all(self) -> None:
        """
        Close all active WebSocket connections gracefully.

        Used during application shutdown.
        """
        async with self.lock:
            connections = list(self.connections.values())

        for connection in connections:
            try:
                await connection.websocket.close(code=status.WS_1001_GOING_AWAY, reason="Server shutdown")
            except Exception as e:
                logger.warning(f"Error closing WebSocket: {str(e)}")

        logger.info("All WebSocket connections closed")
