import asyncio
from typing import Dict, Set, Any

import structlog
from fastapi import WebSocket, WebSocketDisconnect


logger = structlog.get_logger(__name__)


class ChatHub:
    """In-process registry of live sockets, keyed by chat room id."""

    def __init__(self) -> None:
        # room_id (str) -> set of WebSocket connections
        self._room_connections: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def join(self, room_id: str, ws: WebSocket) -> None:
        async with self._lock:
            conns = self._room_connections.setdefault(room_id, set())
            conns.add(ws)

    async def leave(self, room_id: str, ws: WebSocket) -> None:
        async with self._lock:
            conns = self._room_connections.get(room_id)
            if conns is not None:
                conns.discard(ws)
                if not conns:
                    self._room_connections.pop(room_id, None)

    async def leave_all(self, ws: WebSocket) -> None:
        async with self._lock:
            for room_id in list(self._room_connections):
                conns = self._room_connections[room_id]
                conns.discard(ws)
                if not conns:
                    self._room_connections.pop(room_id, None)

    def connection_count(self, room_id: str) -> int:
        return len(self._room_connections.get(room_id, ()))

    async def broadcast_to_room(self, room_id: str, event: str, payload: Any) -> int:
        """
        Fire-and-forget delivery to every socket in the room.

        A socket that fails to receive is dropped from the room; the message
        stays readable through the history endpoint. Returns the number of
        sockets that accepted the message.
        """
        data = {"event": event, "data": payload}
        async with self._lock:
            targets = list(self._room_connections.get(room_id, set()))
        delivered = 0
        dead = []
        for ws in targets:
            try:
                await ws.send_json(data)
                delivered += 1
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.info("chat_socket_dropped", room_id=room_id, error=str(e))
                dead.append(ws)
        for ws in dead:
            await self.leave(room_id, ws)
        return delivered


# Global singleton hub
hub = ChatHub()
