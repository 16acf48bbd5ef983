import json
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError
from backend import RoomStore, MessageStore
from broadcast import Broadcaster
from connections import Connection, ConnectionRegistry
from constants import MAX_NAME_LENGTH
from errors import ChatError, MalformedEvent, ValidationError
from schemas.events import (
    JoinEvent,
    ChatMessageEvent,
    EditEvent,
    DeleteEvent,
    incoming_event_adapter,
    history_event,
    delete_event,
    error_event,
)
from security import is_author
from logging_config import get_logger

logger = get_logger(__name__)

FAILURE_DETAILS = {
    "join": "Failed to join room",
    "message": "Failed to send message",
    "edit": "Failed to edit message",
    "delete": "Failed to delete message",
}


def parse_event(raw: str):
    """Parse one client frame into a typed event or raise MalformedEvent."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedEvent(f"Payload is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise MalformedEvent("Payload must be a JSON object")
    try:
        return incoming_event_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise MalformedEvent(f"Unsupported event {data.get('type')!r}: {e.error_count()} validation error(s)")


class RoomSession:
    """Per-connection protocol: unjoined until a join event, then joined to one room.

    Mutations are persisted before anything is broadcast. Failures are reported
    only to this connection as an error event.
    """

    def __init__(self, connection: Connection, registry: ConnectionRegistry, broadcaster: Broadcaster,
                 rooms: RoomStore, messages: MessageStore):
        self.connection = connection
        self.registry = registry
        self.broadcaster = broadcaster
        self.rooms = rooms
        self.messages = messages
        self.closed = False

    @property
    def room_id(self):
        return self.connection.room_id

    @property
    def username(self):
        return self.connection.username

    async def handle_raw(self, raw: str):
        """Handle one incoming frame. Malformed frames are logged and dropped."""
        try:
            event = parse_event(raw)
        except MalformedEvent as e:
            logger.error(f"Dropping malformed event from {self.connection}: {e.detail}")
            return
        await self.handle(event)

    async def handle(self, event):
        if self.closed:
            return
        if isinstance(event, JoinEvent):
            await self._run("join", self.join, event)
            return
        if not self.connection.joined:
            logger.debug(f"Ignoring {event.type} event from unjoined {self.connection}")
            return
        if isinstance(event, ChatMessageEvent):
            await self._run("message", self.send_message, event)
        elif isinstance(event, EditEvent):
            await self._run("edit", self.edit_message, event)
        elif isinstance(event, DeleteEvent):
            await self._run("delete", self.delete_message, event)

    async def _run(self, action: str, handler, event):
        try:
            await handler(event)
        except ChatError as e:
            logger.warning(f"{action} from {self.connection} rejected: {e.detail}")
            await self.broadcaster.send(self.connection, error_event(action, e.detail))
        except RedisError as e:
            logger.error(f"Storage failure handling {action} from {self.connection}: {e}", exc_info=True)
            await self.broadcaster.send(self.connection, error_event(action, FAILURE_DETAILS[action]))
        except Exception as e:
            # one bad event must not end the receive loop
            logger.error(f"Unexpected error handling {action} from {self.connection}: {e}", exc_info=True)
            await self.broadcaster.send(self.connection, error_event(action, FAILURE_DETAILS[action]))

    async def join(self, event: JoinEvent):
        username = event.username.strip()
        if not username:
            raise ValidationError("Username is required")
        if len(username) > MAX_NAME_LENGTH:
            raise ValidationError(f"Username must be at most {MAX_NAME_LENGTH} characters")
        await self.rooms.get_room(event.room_id)

        if self.connection.joined:
            self.leave()
        self.connection.room_id = event.room_id
        self.connection.username = username
        self.registry.register(event.room_id, self.connection)
        logger.info(f"User {username} joined room {event.room_id} ({self.registry.count(event.room_id)} connections)")

        history = await self.messages.list_messages(event.room_id)
        entries = [m.to_history_entry(is_author(m.username, username)) for m in history]
        await self.broadcaster.send(self.connection, history_event(entries))
        logger.debug(f"Sent {len(entries)} history messages to {self.connection}")

    async def send_message(self, event: ChatMessageEvent):
        room_id, username = self.room_id, self.username
        message = await self.messages.add_message(room_id, username, event.text)
        await self.broadcaster.broadcast(room_id, message.to_event("message", True), author=message.username)

    async def edit_message(self, event: EditEvent):
        room_id, username = self.room_id, self.username
        if not await self.messages.edit_message(event.message_id, username, event.new_text, room_id=room_id):
            raise ChatError("Message not found or not yours to edit")
        message = await self.messages.get_message(event.message_id)
        if message is None:
            # deleted between the edit and the re-read
            return
        await self.broadcaster.broadcast(room_id, message.to_event("edit", True), author=message.username)

    async def delete_message(self, event: DeleteEvent):
        room_id, username = self.room_id, self.username
        if not await self.messages.delete_message(event.message_id, username, room_id=room_id):
            raise ChatError("Message not found or not yours to delete")
        await self.broadcaster.broadcast(room_id, delete_event(event.message_id))

    def leave(self):
        if self.connection.joined:
            self.registry.unregister(self.connection.room_id, self.connection)
            logger.info(f"User {self.connection.username} left room {self.connection.room_id}")
        self.connection.room_id = None
        self.connection.username = None

    def close(self):
        """Transport closed: drop out of the registry. Safe to call twice."""
        if self.closed:
            return
        self.leave()
        self.closed = True
