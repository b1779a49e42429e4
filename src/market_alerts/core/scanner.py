"""
MarketScanner: the context object that owns the cache, orchestrator and
scheduler and exposes the operations the HTTP layer calls.
"""
import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from market_alerts.config import ScannerSettings
from market_alerts.core.cache import UniverseCache, utcnow
from market_alerts.core.errors import InvalidSymbolError, TooSoonError
from market_alerts.core.market_hours import MarketClock
from market_alerts.core.models import CachedAlerts, Quote, ScanResult, ScannerStatus
from market_alerts.core.orchestrator import ScanCallback, ScanOrchestrator
from market_alerts.core.quotes import QuoteSource
from market_alerts.core.rate_limit import FixedDelaySequencer, RetryPolicy
from market_alerts.core.scheduler import ScanScheduler
from market_alerts.core.universes import UniverseRegistry, normalize_symbols
from market_alerts.logger import get_logger

logger = get_logger(__name__)


class MarketScanner:
    def __init__(
        self,
        settings: ScannerSettings,
        registry: UniverseRegistry,
        quote_source: QuoteSource,
        *,
        market_clock: Optional[MarketClock] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.registry = registry
        self.quote_source = quote_source
        self.market_clock = market_clock or MarketClock(settings.market_timezone)
        self.cache = UniverseCache(settings.min_force_scan_gap_minutes, clock=clock)
        self.orchestrator = ScanOrchestrator(
            registry,
            quote_source,
            self.cache,
            self.market_clock,
            normal_threshold_pct=settings.normal_threshold_pct,
            strong_threshold_pct=settings.strong_threshold_pct,
            max_symbols_per_scan=settings.max_symbols_per_scan,
            min_price=settings.min_price,
            sequencer=FixedDelaySequencer(settings.request_delay_ms / 1000.0, sleep=sleep),
            retry_policy=retry_policy or RetryPolicy(sleep=sleep),
            clock=clock,
            respect_market_hours=settings.respect_market_hours,
        )
        self.scheduler = ScanScheduler(
            self.orchestrator,
            settings.scan_universes,
            settings.scan_interval_minutes * 60,
            active_universe=settings.default_universe,
            sleep=sleep,
        )

    # --- lifecycle ---

    async def start(self, wait_initial: bool = True) -> None:
        await self.scheduler.start(wait_initial=wait_initial)

    async def stop(self) -> None:
        await self.scheduler.stop()

    # --- universe selection ---

    @property
    def active_universe(self) -> str:
        return self.scheduler.active_universe

    def set_active_universe(self, universe_id: str) -> str:
        self.registry.get(universe_id)
        self.scheduler.active_universe = universe_id
        logger.info("Active universe changed to: %s", universe_id)
        return universe_id

    def _resolve(self, universe_id: Optional[str]) -> str:
        universe_id = universe_id or self.active_universe
        self.registry.get(universe_id)
        return universe_id

    # --- reads ---

    def get_alerts(self, universe_id: Optional[str] = None) -> CachedAlerts:
        """
        Instant cache read. A stale (or never-scanned) universe gets a
        background refresh queued; the caller still gets the cached answer now.
        """
        universe_id = self._resolve(universe_id)
        view = self.cache.read(universe_id, scan_in_progress=self.orchestrator.is_scanning(universe_id))
        if view.stale and not view.scan_in_progress:
            logger.debug("Cache for %s is stale (age=%s), refreshing in background", universe_id, view.age_minutes)
            self.orchestrator.trigger(universe_id)
            view.scan_in_progress = True
        return view

    def get_status(self, universe_id: Optional[str] = None) -> ScannerStatus:
        universe_id = self._resolve(universe_id)
        view = self.cache.read(universe_id, scan_in_progress=self.orchestrator.is_scanning(universe_id))
        market = self.market_clock.status()
        return ScannerStatus(
            universe_id=universe_id,
            is_open=market.is_open,
            last_scan=view.last_scan,
            alert_count=len(view.alerts),
            stale=view.stale,
            age_minutes=view.age_minutes,
            scan_in_progress=view.scan_in_progress,
            market_status=market,
        )

    # --- commands ---

    async def force_refresh(self, universe_id: Optional[str] = None) -> ScanResult:
        """
        Blocking scan for explicit user refreshes.

        Raises TooSoonError while a scan for the universe is running or when the
        last one finished less than min_force_scan_gap_minutes ago.
        """
        universe_id = self._resolve(universe_id)
        if self.orchestrator.is_scanning(universe_id):
            raise TooSoonError(universe_id, max(1, self.settings.min_force_scan_gap_minutes))
        retry_after = self.cache.retry_after_minutes(universe_id)
        if retry_after > 0:
            raise TooSoonError(universe_id, retry_after)
        return await self.orchestrator.scan_universe(universe_id)

    async def update_universe_symbols(self, universe_id: str, symbols: Iterable[object]) -> List[str]:
        return await self.registry.update_symbols(universe_id, symbols)

    async def reset_universe_symbols(self, universe_id: str) -> List[str]:
        return await self.registry.reset_symbols(universe_id)

    async def lookup_symbol(self, symbol: str) -> Quote:
        """Live quote for one ticker, outside any universe. Not cached."""
        normalized = normalize_symbols([symbol])
        if not normalized:
            raise InvalidSymbolError(symbol)
        return await self.orchestrator.fetch_one(normalized[0])

    # --- notifications ---

    def subscribe(self, callback: ScanCallback) -> None:
        self.orchestrator.subscribe(callback)

    def unsubscribe(self, callback: ScanCallback) -> None:
        self.orchestrator.unsubscribe(callback)

    def scanner_info(self) -> Dict[str, Any]:
        return {
            "active_universe": self.active_universe,
            "scan_universes": list(self.scheduler.cursor.universes),
            "next_universe": self.scheduler.cursor.peek(),
            "scan_interval_minutes": self.settings.scan_interval_minutes,
            "normal_threshold_pct": self.settings.normal_threshold_pct,
            "strong_threshold_pct": self.settings.strong_threshold_pct,
            "min_force_scan_gap_minutes": self.settings.min_force_scan_gap_minutes,
            "running": self.scheduler.is_running,
        }
