"""Periodic background replay of the pending queue."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from src.sync.engine import SyncEngine
from src.sync.errors import SyncError
from src.sync.models import ConnectivityState

logger = logging.getLogger(__name__)


class ReplayScheduler:
    """Calls ``engine.replay_pending()`` every ``interval`` seconds while online.

    While the engine is not online each tick checks the backend with a health
    check instead; a successful check brings it online and replays the queue.

    Overlap with a manual replay is harmless: the engine skips record types
    whose replay is already in flight.
    """

    def __init__(self, engine: SyncEngine, interval: float = 300.0) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.engine = engine
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.debug(f"Replay scheduler started (every {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def tick(self) -> None:
        """Check the backend while offline, else replay any queued work."""
        if self.engine.state != ConnectivityState.ONLINE:
            await self.engine.check_health()
            return
        if not len(self.engine.queue):
            return
        try:
            await self.engine.replay_pending()
        except SyncError as e:
            logger.warning(f"Scheduled replay failed: {e}")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()
