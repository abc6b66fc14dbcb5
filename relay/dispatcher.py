from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from constants import DISPATCH_QUEUE_SIZE, SEND_TIMEOUT
from logging_config import get_logger
from relay.errors import TransportError
from relay.registry import Connection, ConnectionRegistry
from relay.tracker import RoomLifecycleTracker

logger = get_logger(__name__)

# Close code sent to evicted connections (1001 "going away")
EVICTION_CLOSE_CODE = 1001


@dataclass
class Envelope:
    payload: Optional[dict]
    room: str
    # When set, deliver to this connection only instead of the whole room
    target: Optional[Connection] = None
    # Close `target` instead of sending a payload
    close: bool = False


class BroadcastDispatcher:
    """Single writer for every socket.

    Sessions enqueue frames; one worker task drains the queue in arrival order
    and fans each frame out to a snapshot of the room's members. A member whose
    write fails is evicted without interrupting delivery to the rest. Close
    frames for evicted connections go through the same worker.

    At most `maxsize` frames are queued; when full, the oldest queued frame is
    dropped. Close envelopes do not count toward the bound and are never dropped.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        tracker: RoomLifecycleTracker,
        maxsize: int = DISPATCH_QUEUE_SIZE,
        send_timeout: Optional[float] = SEND_TIMEOUT,
    ) -> None:
        if maxsize < 1:
            raise ValueError(f"Dispatch queue size must be at least 1, got {maxsize}")
        self.registry = registry
        self.tracker = tracker
        self.maxsize = maxsize
        self.send_timeout = send_timeout
        self.dropped = 0
        self._pending: Deque[Envelope] = deque()
        self._queued_frames = 0
        self._unfinished = 0
        self._has_items = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="broadcast-dispatcher")
            logger.info(f"Broadcast dispatcher started (queue size {self.maxsize})")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Broadcast dispatcher stopped")

    def submit(self, payload: dict, room: str) -> None:
        """Queue `payload` for every member of `room`."""
        self._enqueue_frame(Envelope(payload=payload, room=room))

    def send_to(self, conn: Connection, payload: dict) -> None:
        """Queue `payload` for a single connection."""
        self._enqueue_frame(Envelope(payload=payload, room=conn.room, target=conn))

    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait until everything queued so far has been delivered."""
        await self._idle.wait()

    def _enqueue_frame(self, envelope: Envelope) -> None:
        if self._queued_frames >= self.maxsize:
            oldest = next(e for e in self._pending if not e.close)
            self._pending.remove(oldest)
            self._queued_frames -= 1
            self._unfinished -= 1
            self.dropped += 1
            logger.warning(f"Dispatch queue full, dropped oldest frame for room {oldest.room}")
        self._queued_frames += 1
        self._append(envelope)

    def _append(self, envelope: Envelope) -> None:
        self._pending.append(envelope)
        self._unfinished += 1
        self._idle.clear()
        self._has_items.set()

    async def _run(self) -> None:
        while True:
            await self._has_items.wait()
            envelope = self._pending.popleft()
            if not self._pending:
                self._has_items.clear()
            if not envelope.close:
                self._queued_frames -= 1
            try:
                await self._deliver(envelope)
            except Exception as e:
                logger.error(f"Error delivering frame for room {envelope.room}: {e}", exc_info=True)
            finally:
                self._unfinished -= 1
                if self._unfinished == 0:
                    self._idle.set()

    async def _deliver(self, envelope: Envelope) -> None:
        if envelope.close:
            await envelope.target.close(code=EVICTION_CLOSE_CODE)
            return

        if envelope.target is not None:
            recipients = [envelope.target] if envelope.target in self.registry else []
        else:
            recipients = await self.registry.members_of(envelope.room)

        for conn in recipients:
            try:
                await conn.send_json(envelope.payload, timeout=self.send_timeout)
            except TransportError as e:
                logger.warning(f"Error sending to connection {conn.connection_id} in room {envelope.room}: {e}")
                await self.evict(conn, "write failed")
        if envelope.target is None:
            logger.debug(f"Delivered {envelope.payload.get('type')} frame to {len(recipients)} connections in room {envelope.room}")

    async def evict(self, conn: Connection, reason: str) -> bool:
        """Unregister `conn`, release its room and queue the socket close.

        Safe to call from several paths for the same connection: only the call
        that actually removes it from the registry releases the room and closes
        the socket. Returns whether this call did the removal.
        """
        room = await self.registry.unregister(conn)
        if room is None:
            return False
        self._append(Envelope(payload=None, room=room, target=conn, close=True))
        if room:
            await self.tracker.leave(room)
        logger.info(f"Connection {conn.connection_id} evicted from room {room!r}: {reason}")
        return True
