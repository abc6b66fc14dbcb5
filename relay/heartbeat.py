from __future__ import annotations

import asyncio
import time
from typing import Callable, List, Optional

from constants import HEARTBEAT_INTERVAL, HEARTBEAT_TIMEOUT
from logging_config import get_logger
from relay.dispatcher import BroadcastDispatcher
from relay.registry import Connection, ConnectionRegistry
from schemas.frames import ping_frame

logger = get_logger(__name__)


class HeartbeatMonitor:
    """Pings every connection each `interval` seconds and evicts the silent ones.

    A connection is stale once nothing has been read from it and nothing has
    been written to it for `timeout` seconds. The pings sent here count as
    writes, so a listen-only client that keeps its socket open stays live; a
    dead peer is caught by the failed or timed-out write instead.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        dispatcher: BroadcastDispatcher,
        interval: float = HEARTBEAT_INTERVAL,
        timeout: float = HEARTBEAT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.dispatcher = dispatcher
        self.interval = interval
        self.timeout = timeout
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self.interval <= 0:
            logger.info("Heartbeat disabled (interval <= 0)")
            return
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="heartbeat-monitor")
            logger.info(f"Heartbeat started (interval {self.interval}s, timeout {self.timeout}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Heartbeat sweep failed: {e}", exc_info=True)

    async def sweep(self) -> List[Connection]:
        """Evict stale connections and ping the rest. Returns the evicted ones."""
        now = self.clock()
        evicted = []
        for conn in await self.registry.snapshot():
            idle = now - conn.last_seen
            if idle > self.timeout:
                if await self.dispatcher.evict(conn, f"no traffic for {idle:.0f}s"):
                    evicted.append(conn)
                continue
            self.dispatcher.send_to(conn, ping_frame(conn.room))
        if evicted:
            logger.info(f"Heartbeat evicted {len(evicted)} stale connection(s)")
        return evicted
