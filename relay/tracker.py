from __future__ import annotations

import asyncio
from typing import Dict

from logging_config import get_logger
from relay.errors import PersistenceError

logger = get_logger(__name__)


class RoomLifecycleTracker:
    """Counts live members per room and mirrors room existence into the room store.

    A record is ensured when a room's count goes 0 -> 1 and deleted when it drops
    back to 0. Both decisions are taken under the same lock acquisition as the
    count change, so concurrent joins create at most once and concurrent leaves
    delete at most once. Store calls are synchronous and never awaited while the
    lock is held.
    """

    def __init__(self, store) -> None:
        self._store = store
        self._counts: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def join(self, room: str) -> int:
        async with self._lock:
            count = self._counts.get(room, 0) + 1
            self._counts[room] = count
            if count == 1:
                self._ensure_record(room)
        logger.debug(f"Room {room} live count is now {count}")
        return count

    async def leave(self, room: str) -> int:
        async with self._lock:
            count = self._counts.get(room)
            if count is None:
                logger.warning(f"Leave for room {room} without a live counter, ignoring")
                return 0
            count -= 1
            if count > 0:
                self._counts[room] = count
            else:
                del self._counts[room]
                self._drop_record(room)
        logger.debug(f"Room {room} live count is now {max(count, 0)}")
        return max(count, 0)

    def count(self, room: str) -> int:
        return self._counts.get(room, 0)

    def rooms(self) -> Dict[str, int]:
        return dict(self._counts)

    def _ensure_record(self, room: str) -> None:
        try:
            if self._store.room_exists(room):
                # Created over HTTP; it no longer needs the empty-room expiry
                self._store.persist_room(room)
            else:
                self._store.create_room(room)
        except PersistenceError as e:
            logger.error(f"Could not ensure record for room {room}: {e}")

    def _drop_record(self, room: str) -> None:
        try:
            self._store.delete_room(room)
        except PersistenceError as e:
            # The counter stays removed; a later create re-checks existence
            logger.error(f"Could not delete record for room {room}: {e}")
            return
        logger.info(f'Room "{room}" deleted due to inactivity')
