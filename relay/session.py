from __future__ import annotations

from enum import Enum

from fastapi import WebSocketDisconnect

from logging_config import get_logger
from relay.dispatcher import BroadcastDispatcher
from relay.errors import FrameValidationError
from relay.registry import Connection, ConnectionRegistry
from relay.tracker import RoomLifecycleTracker
from relay.validation import decode_frame
from schemas.frames import BROADCAST_TYPES, Frame

logger = get_logger(__name__)


class SessionState(str, Enum):
    UNBOUND = "unbound"
    JOINED = "joined"
    TERMINATED = "terminated"


class SessionLoop:
    """Read loop for one accepted WebSocket.

    The session never writes to a socket itself; outbound traffic goes through
    the dispatcher. On exit, for any reason, the connection is evicted, which
    releases its room exactly once.
    """

    def __init__(
        self,
        connection: Connection,
        registry: ConnectionRegistry,
        tracker: RoomLifecycleTracker,
        dispatcher: BroadcastDispatcher,
    ) -> None:
        self.connection = connection
        self.registry = registry
        self.tracker = tracker
        self.dispatcher = dispatcher
        self.terminated = False

    @property
    def state(self) -> SessionState:
        if self.terminated:
            return SessionState.TERMINATED
        return SessionState.JOINED if self.connection.room else SessionState.UNBOUND

    async def run(self) -> None:
        conn = self.connection
        await self.registry.register(conn)
        message_count = 0
        try:
            while True:
                try:
                    data = await conn.websocket.receive_text()
                except WebSocketDisconnect:
                    logger.info(f"WebSocket disconnected normally for connection {conn.connection_id}")
                    break
                except Exception as e:
                    logger.warning(f"Error reading from connection {conn.connection_id}: {e}")
                    break
                message_count += 1
                conn.touch()
                await self.handle_text(data)
        finally:
            self.terminated = True
            await self.dispatcher.evict(conn, f"session closed after {message_count} frames")

    async def handle_text(self, data: str) -> None:
        try:
            frame = decode_frame(data)
        except FrameValidationError as e:
            logger.warning(f"Dropped frame from connection {self.connection.connection_id}: {e}")
            return
        await self.handle_frame(frame)

    async def handle_frame(self, frame: Frame) -> None:
        if frame.type == "join":
            await self._join(frame)
        elif frame.type in BROADCAST_TYPES:
            self._forward(frame)
        # "ping" only refreshes last_seen, which the read loop already did

    async def _join(self, frame: Frame) -> None:
        conn = self.connection
        new_room = frame.room
        conn.username = frame.username

        # Count the new room before binding so an eviction racing this join
        # never releases a room that was not counted yet
        await self.tracker.join(new_room)
        previous = await self.registry.set_room(conn, new_room)
        if previous is None:
            # Evicted between reads; undo the count taken above
            await self.tracker.leave(new_room)
            logger.info(f"Join for room {new_room} ignored, connection {conn.connection_id} already evicted")
            return
        if previous:
            await self.tracker.leave(previous)
        if previous and previous != new_room:
            logger.info(f"User {conn.username!r} ({conn.connection_id}) moved from room {previous} to {new_room}")
        else:
            logger.info(f"User {conn.username!r} ({conn.connection_id}) joined room {new_room}")

    def _forward(self, frame: Frame) -> None:
        conn = self.connection
        if not conn.room or frame.room != conn.room:
            logger.warning(
                f"Rejected {frame.type} frame from connection {conn.connection_id} "
                f"for room {frame.room!r}, joined room is {conn.room!r}"
            )
            return
        if conn not in self.registry:
            logger.info(f"Dropped {frame.type} frame from evicted connection {conn.connection_id}")
            return
        self.dispatcher.submit(frame.model_dump(), frame.room)
