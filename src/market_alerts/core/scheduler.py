"""
Periodic scan scheduler.

One recurring task; each tick scans exactly one universe, taken round-robin
from the rotation list, so upstream load is spread across the interval.
"""
import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence

from market_alerts.core.models import ScanResult
from market_alerts.core.orchestrator import ScanOrchestrator
from market_alerts.logger import get_logger

logger = get_logger(__name__)


class RoundRobinCursor:
    """Cycles through a fixed list of universe ids."""

    def __init__(self, universes: Sequence[str], index: int = 0):
        if not universes:
            raise ValueError("RoundRobinCursor needs at least one universe")
        self.universes: List[str] = list(universes)
        self.index = index

    def peek(self) -> str:
        return self.universes[self.index % len(self.universes)]

    def advance(self) -> str:
        universe_id = self.peek()
        self.index += 1
        return universe_id


class ScanScheduler:
    def __init__(
        self,
        orchestrator: ScanOrchestrator,
        universes: Sequence[str],
        interval_seconds: float,
        active_universe: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.orchestrator = orchestrator
        self.cursor = RoundRobinCursor(universes)
        self.interval_seconds = interval_seconds
        self.active_universe = active_universe or self.cursor.peek()
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, wait_initial: bool = True) -> None:
        """
        Scan the active universe once, then enter the periodic loop.

        With wait_initial=False the eager scan runs in the background so
        startup is not held up by a full fetch pass.
        """
        if self.is_running:
            return
        logger.info(
            "Starting market scanner (every %.0f s) over %s",
            self.interval_seconds, ", ".join(self.cursor.universes),
        )
        if wait_initial:
            await self._scan(self.active_universe)
        else:
            self.orchestrator.trigger(self.active_universe)
        self._task = asyncio.create_task(self._loop(), name="scan-scheduler")

    async def stop(self) -> None:
        """Cancel the pending timer. An in-flight scan is left to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Market scanner stopped")

    async def _loop(self) -> None:
        while True:
            await self._sleep(self.interval_seconds)
            await self.tick()

    async def tick(self) -> Optional[ScanResult]:
        """Advance the cursor and scan the universe it lands on."""
        universe_id = self.cursor.advance()
        self.ticks += 1
        logger.debug("Scheduler tick %s -> %s", self.ticks, universe_id)
        return await self._scan(universe_id)

    async def _scan(self, universe_id: str) -> Optional[ScanResult]:
        try:
            return await self.orchestrator.scan_universe(universe_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled scan for %s failed", universe_id)
            return None
