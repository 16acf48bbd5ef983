import asyncio
import json
from typing import Dict, Optional
from connections import Connection, ConnectionRegistry
from security import is_author
from logging_config import get_logger

logger = get_logger(__name__)


class Broadcaster:
    """Fans events out to every open connection joined to a room.

    Broadcasts to the same room run one at a time so every recipient sees the
    room's events in the order they were broadcast. Delivery is best effort:
    sockets that are not open are skipped and send failures are only logged.
    """

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry
        self._locks: Dict[int, asyncio.Lock] = {}
        self._waiting: Dict[int, int] = {}

    async def broadcast(self, room_id: int, event: dict, author: Optional[str] = None) -> int:
        """Send `event` to the room and return how many sockets it was handed to.

        When `author` is given the event carries a per-recipient `canEdit` flag:
        true for connections whose username passes the authorship check, false
        for everyone else. Each variant is serialized once.
        """
        if author is None:
            payloads = {None: json.dumps(event)}
        else:
            payloads = {
                True: json.dumps({**event, "canEdit": True}),
                False: json.dumps({**event, "canEdit": False}),
            }

        lock = self._locks.setdefault(room_id, asyncio.Lock())
        self._waiting[room_id] = self._waiting.get(room_id, 0) + 1
        try:
            async with lock:
                recipients = []

                def collect(connection: Connection):
                    if connection.is_open:
                        recipients.append(connection)

                self.registry.for_each(room_id, collect)
                if not recipients:
                    logger.debug(f"No open connections in room {room_id} for {event.get('type')} event")
                    return 0

                send_tasks = []
                for connection in recipients:
                    key = None if author is None else is_author(author, connection.username)
                    send_tasks.append(self._send(connection, payloads[key]))
                await asyncio.gather(*send_tasks)
                logger.debug(f"Broadcasted {event.get('type')} event to {len(send_tasks)} connections in room {room_id}")
                return len(send_tasks)
        finally:
            self._waiting[room_id] -= 1
            if not self._waiting[room_id]:
                del self._waiting[room_id]
                del self._locks[room_id]

    async def send(self, connection: Connection, event: dict):
        """Send one event to a single connection."""
        if connection.is_open:
            await self._send(connection, json.dumps(event))

    async def _send(self, connection: Connection, payload: str):
        try:
            await connection.send_text(payload)
        except Exception as e:
            logger.warning(f"Error sending to {connection}: {e}")
