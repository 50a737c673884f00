import asyncio
import logging
import time
from typing import Optional

from avacall.registry import SessionRegistry

logger = logging.getLogger(__name__)

REAP_INTERVAL_SECONDS = 5 * 60
IDLE_TIMEOUT_SECONDS = 15 * 60


class IdleReaper:
    """Periodically evicts sessions whose stop event never arrived.

    Each evicted session's AI-backend connection is closed here; closing it
    also ends that call's relay loop, which then finds its session already
    gone and skips the second close.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        interval: float = REAP_INTERVAL_SECONDS,
        idle_timeout: float = IDLE_TIMEOUT_SECONDS,
    ):
        self.registry = registry
        self.interval = interval
        self.idle_timeout = idle_timeout
        self._task: Optional[asyncio.Task] = None

    async def sweep(self, now: Optional[float] = None) -> list[str]:
        """Evict every idle session once. Returns the evicted call ids."""
        now = time.monotonic() if now is None else now
        evicted = []
        for session in await self.registry.snapshot():
            removed = await self.registry.remove_if_idle(session.call_sid, self.idle_timeout, now)
            if removed is None:
                continue
            await removed.close_peer()
            evicted.append(removed.call_sid)
            logger.info(
                "Reaped idle session %s (idle %.0fs, state=%s)",
                removed.call_sid, removed.idle_for(now), removed.state.value,
            )
        if evicted:
            logger.info("Cleaned up %d idle session(s)", len(evicted))
        return evicted

    async def run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("Idle sweep failed: %s", e)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
