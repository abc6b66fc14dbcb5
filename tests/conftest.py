"""
Shared fakes for relay tests.

FakeWebSocket mimics the parts of starlette's WebSocket the relay uses
(receive_text, send_text, close). FakeRoomStore is an in-memory RoomStore
that records every call so tests can assert on create/delete counts.
"""

import asyncio
import json
import time
from types import SimpleNamespace

import pytest
from fastapi import WebSocketDisconnect

from relay.dispatcher import BroadcastDispatcher
from relay.errors import PersistenceError
from relay.registry import Connection, ConnectionRegistry
from relay.session import SessionLoop
from relay.tracker import RoomLifecycleTracker

_DISCONNECT = object()


class FakeWebSocket:
    def __init__(self, fail_on_send=False, send_delay=0.0):
        self.sent = []
        self.closed = False
        self.close_code = None
        self.fail_on_send = fail_on_send
        self.send_delay = send_delay
        self._inbox = asyncio.Queue()

    def feed(self, payload):
        self._inbox.put_nowait(json.dumps(payload) if isinstance(payload, dict) else payload)

    def disconnect(self):
        self._inbox.put_nowait(_DISCONNECT)

    async def receive_text(self):
        item = await self._inbox.get()
        if item is _DISCONNECT:
            raise WebSocketDisconnect(code=1000)
        return item

    async def send_text(self, data):
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.fail_on_send or self.closed:
            raise RuntimeError("Cannot call send once a close message has been sent")
        self.sent.append(json.loads(data))

    async def close(self, code=1000):
        self.closed = True
        self.close_code = code
        self._inbox.put_nowait(_DISCONNECT)

    def sent_of_type(self, frame_type):
        return [frame for frame in self.sent if frame.get("type") == frame_type]


class FakeRoomStore:
    def __init__(self):
        # name -> {"password": str | None, "ttl": int | None}
        self.records = {}
        self.calls = []
        self.fail = False

    def _record_call(self, op, name):
        self.calls.append((op, name))
        if self.fail:
            raise PersistenceError(f"{op} failed for room {name}: store unavailable")

    def calls_of(self, op, name=None):
        return [c for c in self.calls if c[0] == op and (name is None or c[1] == name)]

    def ping(self):
        self._record_call("ping", "-")
        return True

    def create_room(self, name, password=None, ttl=None):
        self._record_call("create", name)
        if name in self.records:
            return False
        self.records[name] = {"password": password, "ttl": ttl}
        return True

    def room_exists(self, name):
        self._record_call("exists", name)
        return name in self.records

    def has_password(self, name):
        self._record_call("has_password", name)
        return self.records.get(name, {}).get("password") is not None

    def verify_password(self, name, password):
        self._record_call("verify", name)
        record = self.records.get(name)
        if record is None:
            return False
        if record["password"] is None:
            return True
        return record["password"] == password

    def set_password_if_unset(self, name, password):
        self._record_call("set_password", name)
        record = self.records.get(name)
        if record is None or record["password"] is not None:
            return False
        record["password"] = password
        return True

    def persist_room(self, name):
        self._record_call("persist", name)
        if name not in self.records:
            return False
        self.records[name]["ttl"] = None
        return True

    def delete_room(self, name):
        self._record_call("delete", name)
        return self.records.pop(name, None) is not None


def make_relay(store=None, **dispatcher_kwargs):
    """Build registry, tracker and dispatcher around `store`. Call inside a running loop."""
    store = store if store is not None else FakeRoomStore()
    registry = ConnectionRegistry()
    tracker = RoomLifecycleTracker(store)
    dispatcher_kwargs.setdefault("send_timeout", 1.0)
    dispatcher = BroadcastDispatcher(registry, tracker, **dispatcher_kwargs)
    return SimpleNamespace(store=store, registry=registry, tracker=tracker, dispatcher=dispatcher)


async def open_session(relay, connection_id=None, **ws_kwargs):
    """Accept a fake socket and register it the way SessionLoop.run does."""
    websocket = FakeWebSocket(**ws_kwargs)
    conn = Connection(websocket, connection_id=connection_id)
    session = SessionLoop(conn, relay.registry, relay.tracker, relay.dispatcher)
    await relay.registry.register(conn)
    return session


def join_frame(room, username="alice"):
    return {"type": "join", "username": username, "content": {"encrypted": [], "iv": []}, "room": room}


def message_frame(room, encrypted=(1, 2, 3), iv=(9,), username="alice", frame_type="message"):
    return {
        "type": frame_type,
        "username": username,
        "content": {"encrypted": list(encrypted), "iv": list(iv)},
        "room": room,
    }


def wait_until(predicate, timeout=2.0, interval=0.01):
    """Poll `predicate` from a test thread while the app runs in TestClient's loop."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def store():
    return FakeRoomStore()
