from __future__ import annotations

import asyncio
import json
import time
import uuid
from typing import Dict, List, Optional

from fastapi import WebSocket

from logging_config import get_logger
from relay.errors import TransportError

logger = get_logger(__name__)


class Connection:
    """One accepted socket plus the session state bound to it.

    `room` is empty while the connection is unbound. Only the dispatcher writes
    to `websocket`; the owning session only reads from it.
    """

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None):
        self.websocket = websocket
        self.connection_id = connection_id or str(uuid.uuid4())
        self.username = ""
        self.room = ""
        self.last_seen = time.monotonic()

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    async def send_json(self, payload: dict, timeout: Optional[float] = None) -> None:
        try:
            await asyncio.wait_for(self.websocket.send_text(json.dumps(payload)), timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"Send to {self.connection_id} timed out after {timeout}s") from e
        except Exception as e:
            raise TransportError(f"Send to {self.connection_id} failed: {e}") from e
        # A completed write counts as liveness, like a read
        self.touch()

    async def close(self, code: int = 1000) -> None:
        try:
            await self.websocket.close(code=code)
        except Exception as e:
            # Already closed by the peer or by another eviction path
            logger.debug(f"Error closing WebSocket {self.connection_id}: {e}")

    def __repr__(self) -> str:
        return f"Connection(id={self.connection_id[:8]}, room={self.room!r})"


class ConnectionRegistry:
    """Live connections and the room each one is bound to.

    Every mutation and snapshot runs under one lock, so `members_of` never
    observes a half-applied `unregister` or `set_room`.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}
        self._lock = asyncio.Lock()

    async def register(self, conn: Connection) -> None:
        async with self._lock:
            self._connections[conn.connection_id] = conn
        logger.debug(f"Registered connection {conn.connection_id} (total: {len(self._connections)})")

    async def unregister(self, conn: Connection) -> Optional[str]:
        """Remove `conn`. Returns the room it was bound to ("" if unbound), or None if it was not registered."""
        async with self._lock:
            removed = self._connections.pop(conn.connection_id, None)
            if removed is None:
                return None
            room = removed.room
        logger.debug(f"Unregistered connection {conn.connection_id} from room {room!r}")
        return room

    async def set_room(self, conn: Connection, room: str) -> Optional[str]:
        """Bind `conn` to `room`. Returns the previous room, or None if `conn` is no longer registered."""
        async with self._lock:
            if conn.connection_id not in self._connections:
                return None
            previous = conn.room
            conn.room = room
        return previous

    async def members_of(self, room: str) -> List[Connection]:
        async with self._lock:
            return [conn for conn in self._connections.values() if conn.room == room]

    async def snapshot(self) -> List[Connection]:
        async with self._lock:
            return list(self._connections.values())

    def __contains__(self, conn: Connection) -> bool:
        return conn.connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)
