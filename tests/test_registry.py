"""
Unit tests for ConnectionRegistry and Connection.
"""

import asyncio

import pytest

from conftest import FakeWebSocket
from relay.errors import TransportError
from relay.registry import Connection, ConnectionRegistry


def make_conn(connection_id=None, **ws_kwargs):
    return Connection(FakeWebSocket(**ws_kwargs), connection_id=connection_id)


class TestConnectionRegistry:

    @pytest.mark.asyncio
    async def test_register_and_members_of(self):
        registry = ConnectionRegistry()
        a, b, c = make_conn("a"), make_conn("b"), make_conn("c")
        for conn in (a, b, c):
            await registry.register(conn)

        await registry.set_room(a, "general")
        await registry.set_room(b, "general")
        await registry.set_room(c, "random")

        members = await registry.members_of("general")
        assert {m.connection_id for m in members} == {"a", "b"}
        assert len(registry) == 3

    @pytest.mark.asyncio
    async def test_unregister_is_idempotent(self):
        registry = ConnectionRegistry()
        conn = make_conn()
        await registry.register(conn)
        await registry.set_room(conn, "general")

        assert await registry.unregister(conn) == "general"
        assert await registry.unregister(conn) is None
        assert conn not in registry

    @pytest.mark.asyncio
    async def test_unregister_unbound_connection_returns_empty_room(self):
        registry = ConnectionRegistry()
        conn = make_conn()
        await registry.register(conn)

        assert await registry.unregister(conn) == ""

    @pytest.mark.asyncio
    async def test_unregister_unknown_connection_is_noop(self):
        registry = ConnectionRegistry()
        assert await registry.unregister(make_conn()) is None

    @pytest.mark.asyncio
    async def test_set_room_returns_previous_room(self):
        registry = ConnectionRegistry()
        conn = make_conn()
        await registry.register(conn)

        assert await registry.set_room(conn, "one") == ""
        assert await registry.set_room(conn, "two") == "one"
        assert conn.room == "two"

    @pytest.mark.asyncio
    async def test_set_room_on_unregistered_connection(self):
        registry = ConnectionRegistry()
        conn = make_conn()

        assert await registry.set_room(conn, "general") is None
        assert conn.room == ""

    @pytest.mark.asyncio
    async def test_members_of_is_a_snapshot(self):
        registry = ConnectionRegistry()
        conn = make_conn()
        await registry.register(conn)
        await registry.set_room(conn, "general")

        members = await registry.members_of("general")
        await registry.unregister(conn)

        assert members == [conn]
        assert await registry.members_of("general") == []

    @pytest.mark.asyncio
    async def test_concurrent_register_and_unregister(self):
        registry = ConnectionRegistry()
        conns = [make_conn(str(i)) for i in range(50)]
        await asyncio.gather(*(registry.register(c) for c in conns))
        await asyncio.gather(*(registry.set_room(c, "lobby") for c in conns))

        results = await asyncio.gather(
            *(registry.unregister(c) for c in conns[:25]),
            registry.members_of("lobby"),
        )

        assert all(room == "lobby" for room in results[:25])
        assert len(registry) == 25


class TestConnection:

    @pytest.mark.asyncio
    async def test_send_json(self):
        conn = make_conn()
        await conn.send_json({"type": "ping"})
        assert conn.websocket.sent == [{"type": "ping"}]

    @pytest.mark.asyncio
    async def test_send_failure_raises_transport_error(self):
        conn = make_conn(fail_on_send=True)
        with pytest.raises(TransportError):
            await conn.send_json({"type": "ping"})

    @pytest.mark.asyncio
    async def test_send_timeout_raises_transport_error(self):
        conn = make_conn(send_delay=1.0)
        with pytest.raises(TransportError, match="timed out"):
            await conn.send_json({"type": "ping"}, timeout=0.01)

    @pytest.mark.asyncio
    async def test_successful_send_refreshes_last_seen(self):
        conn = make_conn()
        conn.last_seen = 0.0
        await conn.send_json({"type": "ping"})
        assert conn.last_seen > 0.0

    @pytest.mark.asyncio
    async def test_failed_send_leaves_last_seen(self):
        conn = make_conn(fail_on_send=True)
        conn.last_seen = 0.0
        with pytest.raises(TransportError):
            await conn.send_json({"type": "ping"})
        assert conn.last_seen == 0.0

    @pytest.mark.asyncio
    async def test_close_twice_does_not_raise(self):
        conn = make_conn()
        await conn.close()
        await conn.close(code=1001)
        assert conn.websocket.closed
