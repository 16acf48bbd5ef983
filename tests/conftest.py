import json
import os

# cheap hashes for the test run, read by constants at import
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import fakeredis
import fakeredis.aioredis
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from app import create_app
from backend import RoomStore, MessageStore
from broadcast import Broadcaster
from connections import Connection, ConnectionRegistry


class FakeWebSocket:
    """Stands in for a Starlette WebSocket: records what is sent to it."""

    def __init__(self, open=True, fail=False):
        state = WebSocketState.CONNECTED if open else WebSocketState.DISCONNECTED
        self.client_state = state
        self.application_state = state
        self.fail = fail
        self.sent = []

    async def send_text(self, data):
        if self.fail:
            raise RuntimeError("socket went away")
        self.sent.append(json.loads(data))

    def close(self):
        self.client_state = WebSocketState.DISCONNECTED


def make_redis():
    return fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def redis_client():
    return make_redis()


@pytest.fixture
def room_store(redis_client):
    return RoomStore(redis_client)


@pytest.fixture
def message_store(redis_client):
    return MessageStore(redis_client)


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def broadcaster(registry):
    return Broadcaster(registry)


@pytest.fixture
def make_connection():
    def _make(open=True, fail=False):
        return Connection(FakeWebSocket(open=open, fail=fail))
    return _make


@pytest.fixture
def client():
    with TestClient(create_app(redis_client=make_redis())) as test_client:
        yield test_client
