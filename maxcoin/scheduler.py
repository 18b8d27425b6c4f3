"""
scheduler.py - Lottery draw trigger.

Runs inside the server process and periodically resolves every pending draw
whose scheduled time has passed. Resolution is idempotent, so overlapping
ticks or a restart mid-draw cannot pay a draw twice.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from maxcoin.errors import StorageUnavailable

if TYPE_CHECKING:
    from maxcoin.lottery import LotteryEngine

logger = logging.getLogger("scheduler")

DEFAULT_INTERVAL = 30.0


class DrawScheduler:
    """Background task that calls `LotteryEngine.resolve_due` every `interval` seconds."""

    def __init__(self, lottery: "LotteryEngine", interval: float = DEFAULT_INTERVAL):
        self._lottery = lottery
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> int:
        """Resolve due draws once. Returns how many were resolved."""
        resolved = await self._lottery.resolve_due()
        for result in resolved:
            logger.info("Scheduled draw %s -> %s (next: %s)",
                        result.draw.draw_id, result.draw.status, result.next_draw_id)
        return len(resolved)

    async def _run(self):
        while True:
            try:
                await self.tick()
            except StorageUnavailable as e:
                logger.warning("Draw check skipped, storage busy: %s", e.message)
            except Exception:
                logger.exception("Error in draw scheduler")
            await asyncio.sleep(self.interval)

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Draw scheduler started (interval=%.0fs)", self.interval)

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Draw scheduler stopped")
