import asyncio
import redis.asyncio as redis
from redis.exceptions import WatchError
from datetime import datetime, timezone
from typing import List, Optional
from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_DB, MAX_MESSAGE_LENGTH, MAX_NAME_LENGTH
from redis_keys import (
    REDIS_ROOM_ID_KEY,
    REDIS_ROOMS_KEY,
    REDIS_META_KEY,
    REDIS_ROOM_MESSAGES_KEY,
    REDIS_MESSAGE_ID_KEY,
    REDIS_MESSAGE_KEY,
)
from errors import ValidationError, NotFound, Forbidden
from schemas.rooms import Room
from schemas.messages import Message
from security import hash_password, check_password, password_too_long, is_author
from logging_config import get_logger

logger = get_logger(__name__)


def create_redis_client() -> redis.Redis:
    logger.info(f"Creating Redis client for {REDIS_HOST}:{REDIS_PORT} db={REDIS_DB}")
    return redis.Redis(
        host=REDIS_HOST,
        port=REDIS_PORT,
        password=REDIS_PASSWORD,
        db=REDIS_DB,
        decode_responses=True,
    )


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def _clean(value: Optional[str]) -> str:
    return value.strip() if value else ""


async def _run_blocking(func, *args):
    """Run a CPU bound call (bcrypt) in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func, *args)


class RoomStore:
    """Persisted room records kept in Redis hashes."""

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    def _room_from_hash(self, data: dict) -> Room:
        return Room(
            id=int(data["id"]),
            name=data["name"],
            description=data.get("description") or None,
            password_hash=data.get("password_hash") or None,
            created_by=data.get("created_by", ""),
            created_at=data.get("created_at", ""),
        )

    async def list_rooms(self) -> List[Room]:
        room_ids = await self.redis_client.zrange(REDIS_ROOMS_KEY, 0, -1)
        if not room_ids:
            return []
        async with self.redis_client.pipeline(transaction=False) as pipe:
            for room_id in room_ids:
                pipe.hgetall(REDIS_META_KEY.format(room_id=room_id))
            results = await pipe.execute()
        rooms = [self._room_from_hash(data) for data in results if data]
        logger.debug(f"Listed {len(rooms)} rooms")
        return rooms

    async def create_room(self, name: Optional[str], description: Optional[str], password: Optional[str], username: Optional[str]) -> Room:
        name = _clean(name)
        username = _clean(username)
        if not name or not username:
            raise ValidationError("Name and username are required")
        if len(name) > MAX_NAME_LENGTH or len(username) > MAX_NAME_LENGTH:
            raise ValidationError(f"Name and username must be at most {MAX_NAME_LENGTH} characters")
        if password and password_too_long(password):
            raise ValidationError("Password is too long")

        password_hash = await _run_blocking(hash_password, password) if password else None
        room_id = await self.redis_client.incr(REDIS_ROOM_ID_KEY)
        room = Room(
            id=room_id,
            name=name,
            description=_clean(description) or None,
            password_hash=password_hash,
            created_by=username,
            created_at=utc_now(),
        )
        # Redis hashes cannot hold None, absent fields read back as None
        mapping = {k: str(v) for k, v in room.model_dump().items() if v is not None}
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.hset(REDIS_META_KEY.format(room_id=room_id), mapping=mapping)
            pipe.zadd(REDIS_ROOMS_KEY, {str(room_id): room_id})
            await pipe.execute()
        logger.info(f"Room {room_id} ({name}) created by {username}, password protected: {room.has_password}")
        return room

    async def get_room(self, room_id: int) -> Room:
        data = await self.redis_client.hgetall(REDIS_META_KEY.format(room_id=room_id))
        if not data:
            logger.debug(f"Room {room_id} not found in Redis")
            raise NotFound("Room not found")
        return self._room_from_hash(data)

    async def verify_password(self, room_id: int, candidate: Optional[str]) -> bool:
        room = await self.get_room(room_id)
        return await _run_blocking(check_password, room.password_hash, candidate)

    async def delete_room(self, room_id: int, candidate: Optional[str]) -> None:
        """Delete a room and every message in it in one transaction.

        The message index is watched so a message added while the delete is in
        flight either lands before it (and is removed) or fails with NotFound.
        """
        room = await self.get_room(room_id)
        if not await _run_blocking(check_password, room.password_hash, candidate):
            logger.warning(f"Delete rejected for room {room_id}: invalid password")
            raise Forbidden("Invalid password")

        meta_key = REDIS_META_KEY.format(room_id=room_id)
        messages_key = REDIS_ROOM_MESSAGES_KEY.format(room_id=room_id)
        async with self.redis_client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(meta_key, messages_key)
                    if not await pipe.exists(meta_key):
                        raise NotFound("Room not found")
                    message_ids = await pipe.zrange(messages_key, 0, -1)
                    pipe.multi()
                    for message_id in message_ids:
                        pipe.delete(REDIS_MESSAGE_KEY.format(message_id=message_id))
                    pipe.delete(messages_key)
                    pipe.delete(meta_key)
                    pipe.zrem(REDIS_ROOMS_KEY, str(room_id))
                    await pipe.execute()
                    break
                except WatchError:
                    logger.debug(f"Room {room_id} changed during delete, retrying")
                    continue
        logger.info(f"Room {room_id} deleted along with {len(message_ids)} messages")


class MessageStore:
    """Persisted messages per room with author-gated edit and delete."""

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    def _message_from_hash(self, data: dict) -> Message:
        return Message(
            id=int(data["id"]),
            room_id=int(data["room_id"]),
            username=data["username"],
            text=data["text"],
            time=data["time"],
            is_edited=data.get("is_edited") == "1",
        )

    def _matches(self, data: dict, username: str, room_id: Optional[int]) -> bool:
        if not data or not is_author(data.get("username"), username):
            return False
        return room_id is None or data.get("room_id") == str(room_id)

    def _validate_text(self, text: Optional[str]) -> str:
        text = _clean(text)
        if not text:
            raise ValidationError("Message text is required")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message text must be at most {MAX_MESSAGE_LENGTH} characters")
        return text

    async def list_messages(self, room_id: int) -> List[Message]:
        """Messages of a room ordered by time, ties broken by id."""
        message_ids = await self.redis_client.zrange(REDIS_ROOM_MESSAGES_KEY.format(room_id=room_id), 0, -1)
        if not message_ids:
            return []
        async with self.redis_client.pipeline(transaction=False) as pipe:
            for message_id in message_ids:
                pipe.hgetall(REDIS_MESSAGE_KEY.format(message_id=message_id))
            results = await pipe.execute()
        messages = [self._message_from_hash(data) for data in results if data]
        messages.sort(key=lambda m: (m.time, m.id))
        return messages

    async def get_message(self, message_id: int) -> Optional[Message]:
        data = await self.redis_client.hgetall(REDIS_MESSAGE_KEY.format(message_id=message_id))
        if not data:
            return None
        return self._message_from_hash(data)

    async def add_message(self, room_id: int, username: str, text: Optional[str]) -> Message:
        text = self._validate_text(text)
        meta_key = REDIS_META_KEY.format(room_id=room_id)
        message_id = await self.redis_client.incr(REDIS_MESSAGE_ID_KEY)
        message = Message(id=message_id, room_id=room_id, username=username, text=text, time=utc_now())
        mapping = message.model_dump()
        mapping["is_edited"] = "0"

        async with self.redis_client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(meta_key)
                    if not await pipe.exists(meta_key):
                        raise NotFound("Room not found")
                    pipe.multi()
                    pipe.hset(REDIS_MESSAGE_KEY.format(message_id=message_id), mapping={k: str(v) for k, v in mapping.items()})
                    pipe.zadd(REDIS_ROOM_MESSAGES_KEY.format(room_id=room_id), {str(message_id): message_id})
                    await pipe.execute()
                    break
                except WatchError:
                    continue
        logger.debug(f"Message {message_id} stored in room {room_id} by {username}")
        return message

    async def edit_message(self, message_id: int, username: str, new_text: Optional[str], room_id: Optional[int] = None) -> bool:
        """Replace the text of a message if `username` wrote it.

        The author check and the write happen in one WATCH/MULTI transaction.
        With `room_id` the message must also belong to that room.
        Returns False when nothing matched (missing message, other author or room).
        """
        new_text = self._validate_text(new_text)
        key = REDIS_MESSAGE_KEY.format(message_id=message_id)
        async with self.redis_client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    data = await pipe.hgetall(key)
                    if not self._matches(data, username, room_id):
                        logger.debug(f"Edit of message {message_id} by {username} matched nothing")
                        return False
                    pipe.multi()
                    pipe.hset(key, mapping={"text": new_text, "is_edited": "1"})
                    await pipe.execute()
                    return True
                except WatchError:
                    continue

    async def delete_message(self, message_id: int, username: str, room_id: Optional[int] = None) -> bool:
        """Remove a message if `username` wrote it. Returns False when nothing matched."""
        key = REDIS_MESSAGE_KEY.format(message_id=message_id)
        async with self.redis_client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    data = await pipe.hgetall(key)
                    if not self._matches(data, username, room_id):
                        logger.debug(f"Delete of message {message_id} by {username} matched nothing")
                        return False
                    pipe.multi()
                    pipe.delete(key)
                    pipe.zrem(REDIS_ROOM_MESSAGES_KEY.format(room_id=data["room_id"]), str(message_id))
                    await pipe.execute()
                    return True
                except WatchError:
                    continue
