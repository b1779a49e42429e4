"""
Scan orchestration: market-hours gate, paced quote fetching, detection and
cache replacement for one universe at a time.

At most one scan per universe id is in flight. Callers that ask for a scan
while one is running share its result instead of starting another fetch run.
"""
import asyncio
import inspect
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from market_alerts.core.cache import UniverseCache, utcnow
from market_alerts.core.detector import detect
from market_alerts.core.errors import (
    QuoteFetchError,
    QuoteSourceUnavailableError,
    SymbolNotFoundError,
)
from market_alerts.core.market_hours import MarketClock
from market_alerts.core.models import Quote, ScanResult
from market_alerts.core.quotes import QuoteSource, build_quote
from market_alerts.core.rate_limit import FixedDelaySequencer, RetryPolicy
from market_alerts.core.universes import UniverseRegistry
from market_alerts.logger import get_logger

logger = get_logger(__name__)

ScanCallback = Callable[[ScanResult], Any]


class ScanOrchestrator:
    def __init__(
        self,
        registry: UniverseRegistry,
        quote_source: QuoteSource,
        cache: UniverseCache,
        market_clock: Optional[MarketClock] = None,
        *,
        normal_threshold_pct: float = 3.0,
        strong_threshold_pct: float = 5.0,
        max_symbols_per_scan: int = 100,
        min_price: float = 5.0,
        sequencer: Optional[FixedDelaySequencer] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
        respect_market_hours: bool = True,
    ):
        self.registry = registry
        self.quote_source = quote_source
        self.cache = cache
        self.market_clock = market_clock or MarketClock()
        self.normal_threshold_pct = normal_threshold_pct
        self.strong_threshold_pct = strong_threshold_pct
        self.max_symbols_per_scan = max_symbols_per_scan
        self.min_price = min_price
        self.sequencer = sequencer or FixedDelaySequencer(0.35)
        self.retry_policy = retry_policy or RetryPolicy()
        self.respect_market_hours = respect_market_hours
        self._clock = clock
        self._inflight: Dict[str, asyncio.Task] = {}
        self._subscribers: List[ScanCallback] = []
        self._pending_notifications: Set[asyncio.Task] = set()

    # --- in-flight bookkeeping ---

    def current_task(self, universe_id: str) -> Optional[asyncio.Task]:
        """The running scan task for a universe, if any."""
        task = self._inflight.get(universe_id)
        if task is None or task.done():
            return None
        return task

    def is_scanning(self, universe_id: str) -> bool:
        return self.current_task(universe_id) is not None

    def _start(self, universe_id: str) -> asyncio.Task:
        task = self.current_task(universe_id)
        if task is not None:
            return task
        task = asyncio.create_task(self._run_scan(universe_id), name=f"scan:{universe_id}")
        self._inflight[universe_id] = task

        def _forget(t: asyncio.Task) -> None:
            if self._inflight.get(universe_id) is t:
                del self._inflight[universe_id]

        task.add_done_callback(_forget)
        task.add_done_callback(self._log_failure)
        return task

    async def scan_universe(self, universe_id: str) -> ScanResult:
        """
        Run (or join) a scan and return its result.

        Whole-scan failures propagate to the caller; the cache is left as it was.
        """
        self.registry.get(universe_id)
        task = self._start(universe_id)
        # shield: a cancelled caller must not abort the shared scan
        return await asyncio.shield(task)

    def trigger(self, universe_id: str) -> asyncio.Task:
        """Fire-and-forget scan. Failures are logged, never raised."""
        self.registry.get(universe_id)
        return self._start(universe_id)

    @staticmethod
    def _log_failure(task: asyncio.Task) -> None:
        # runs for every scan task, awaited or not, so no exception goes unretrieved
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scan %s failed: %s", task.get_name(), exc, exc_info=exc)

    async def fetch_one(self, symbol: str) -> Quote:
        """
        Single-symbol lookup through the same pacing and retry policy as scans.

        Raises SymbolNotFoundError when the provider has no usable quote.
        """
        await self.sequencer.wait()
        snapshot = await self.retry_policy.call(self.quote_source.fetch_quote, symbol)
        quote = build_quote(snapshot, 0.0, self._clock())
        if quote is None:
            raise SymbolNotFoundError(symbol)
        return quote

    # --- scan ---

    async def _run_scan(self, universe_id: str) -> ScanResult:
        status = self.market_clock.status()
        if self.respect_market_hours and not status.is_open:
            logger.info("Market closed - skipping scan for %s (%s)", universe_id, status.current_time)
            entry = self.cache.entry(universe_id)
            return ScanResult(
                universe_id=universe_id,
                alerts=list(entry.alerts),
                last_scan=entry.last_scan_time,
                market_status=status,
                skipped=True,
                count=len(entry.alerts),
            )

        symbols = (await self.registry.list_symbols(universe_id))[: self.max_symbols_per_scan]
        logger.info("Scanning %s symbols for universe %s", len(symbols), universe_id)
        started = time.monotonic()

        quotes = await self._fetch_quotes(universe_id, symbols)

        scan_time = self._clock()
        alerts = detect(
            quotes,
            self.normal_threshold_pct,
            self.strong_threshold_pct,
            universe_id=universe_id,
            scan_time=scan_time,
        )
        entry = self.cache.replace(universe_id, alerts, scan_time)
        logger.info(
            "Scan for %s done: %s/%s quotes, %s alerts in %.1fs",
            universe_id, len(quotes), len(symbols), len(alerts), time.monotonic() - started,
        )

        result = ScanResult(
            universe_id=universe_id,
            alerts=list(entry.alerts),
            last_scan=entry.last_scan_time,
            market_status=status,
            skipped=False,
            count=len(entry.alerts),
        )
        self._notify_subscribers(result)
        return result

    async def _fetch_quotes(self, universe_id: str, symbols: List[str]) -> Dict[str, Quote]:
        """Sequential, paced fetch. One symbol failing never stops the batch."""
        quotes: Dict[str, Quote] = {}
        failed = 0
        for symbol in symbols:
            await self.sequencer.wait()
            try:
                snapshot = await self.retry_policy.call(self.quote_source.fetch_quote, symbol)
            except SymbolNotFoundError:
                logger.debug("No quote for %s, skipping", symbol)
                continue
            except QuoteFetchError as e:
                failed += 1
                logger.warning("Quote fetch failed for %s: %s", symbol, e)
                continue

            quote = build_quote(snapshot, self.min_price, self._clock())
            if quote is None:
                logger.debug("Discarding unusable quote for %s", symbol)
                continue
            quotes[symbol] = quote

        if symbols and failed == len(symbols):
            raise QuoteSourceUnavailableError(universe_id, failed)
        return quotes

    # --- subscribers ---

    def subscribe(self, callback: ScanCallback) -> None:
        """Register a callback (plain or async) called with every completed ScanResult."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: ScanCallback) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    def _notify_subscribers(self, result: ScanResult) -> None:
        # copy to avoid mutation while iterating
        for cb in list(self._subscribers):
            task = asyncio.create_task(self._deliver(cb, result))
            self._pending_notifications.add(task)
            task.add_done_callback(self._pending_notifications.discard)

    async def _deliver(self, callback: ScanCallback, result: ScanResult) -> None:
        try:
            outcome = callback(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Scan subscriber %r failed", callback)

    async def wait_for_notifications(self) -> None:
        """Let queued subscriber deliveries finish."""
        while self._pending_notifications:
            await asyncio.gather(*list(self._pending_notifications))
