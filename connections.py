import uuid
from typing import Callable, Dict, Optional, Set
from fastapi import WebSocket
from starlette.websockets import WebSocketState
from logging_config import get_logger

logger = get_logger(__name__)


class Connection:
    """One live websocket plus the room and username it joined with."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.connection_id = str(uuid.uuid4())
        self.room_id: Optional[int] = None
        self.username: Optional[str] = None

    @property
    def joined(self) -> bool:
        return self.room_id is not None and self.username is not None

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, payload: str):
        await self.websocket.send_text(payload)

    def __repr__(self):
        return f"Connection({self.connection_id[:8]}, room={self.room_id}, username={self.username!r})"


class ConnectionRegistry:
    """Tracks which connections are joined to which room.

    The registry only references connections. Closing them is the transport's
    job, the endpoint unregisters on close.
    """

    def __init__(self):
        self._rooms: Dict[int, Set[Connection]] = {}

    def register(self, room_id: int, connection: Connection):
        self._rooms.setdefault(room_id, set()).add(connection)
        logger.debug(f"Registered {connection} in room {room_id} (local connections: {len(self._rooms[room_id])})")

    def unregister(self, room_id: int, connection: Connection):
        connections = self._rooms.get(room_id)
        if not connections:
            return
        connections.discard(connection)
        if not connections:
            del self._rooms[room_id]
            logger.info(f"No more connections in room {room_id}, removed registry entry")

    def for_each(self, room_id: int, fn: Callable[[Connection], None]):
        # copy, fn may unregister
        for connection in list(self._rooms.get(room_id, ())):
            fn(connection)

    def connections(self, room_id: int) -> Set[Connection]:
        return set(self._rooms.get(room_id, ()))

    def count(self, room_id: int) -> int:
        return len(self._rooms.get(room_id, ()))

    def __contains__(self, room_id: int) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
