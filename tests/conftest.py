# ============================================================
# IMPORTS
# ============================================================

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Union

import pytest
import pytest_asyncio

from market_alerts.config import ScannerSettings
from market_alerts.core.errors import SymbolNotFoundError
from market_alerts.core.models import MarketStatus, QuoteSnapshot, UniverseDefinition
from market_alerts.core.rate_limit import RetryPolicy
from market_alerts.core.scanner import MarketScanner
from market_alerts.core.universes import UniverseRegistry
from market_alerts.db.dbadapter import UniverseStore

# ============================================================
# TEST DOUBLES
# ============================================================

T0 = datetime(2024, 3, 6, 15, 0, tzinfo=timezone.utc)


def snap(symbol: str, change_pct: float, previous_close: float = 100.0, volume: int = 1000) -> QuoteSnapshot:
    """Snapshot whose move vs previous close is `change_pct` percent."""
    return QuoteSnapshot(
        symbol=symbol,
        price=previous_close * (1 + change_pct / 100),
        previous_close=previous_close,
        volume=volume,
    )


class FakeQuoteSource:
    """
    In-memory quote source.
    - responses: symbol -> QuoteSnapshot, exception instance, or list of those (consumed per call)
    - gate: optional asyncio.Event every fetch waits on (for in-flight tests)
    """
    name = "fake"

    def __init__(self, responses: Optional[Dict[str, Union[QuoteSnapshot, Exception, list]]] = None):
        self.responses = dict(responses or {})
        self.calls: List[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    async def fetch_quote(self, symbol: str) -> QuoteSnapshot:
        self.calls.append(symbol)
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.get(symbol)
        if isinstance(response, list):
            response = response.pop(0)
        if response is None:
            raise SymbolNotFoundError(symbol)
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self) -> None:
        self.closed = True


class FakeMarketClock:
    def __init__(self, is_open: bool = True):
        self.open = is_open

    def is_open(self, now=None) -> bool:
        return self.open

    def status(self, now=None) -> MarketStatus:
        return MarketStatus(is_open=self.open, current_time="10:00:00 AM", timezone="America/New_York")


class FakeClock:
    """Controllable wall clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0) -> None:
        self.now = self.now + timedelta(minutes=minutes, seconds=seconds)


class SleepRecorder:
    """Stands in for asyncio.sleep: records delays, yields once, never waits."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


TEST_UNIVERSES = {
    "TEST": UniverseDefinition(id="TEST", name="Test", symbols=("AAPL", "MSFT", "NVDA"), max_symbols=5),
    "OTHER": UniverseDefinition(id="OTHER", name="Other", symbols=("XOM", "CVX"), max_symbols=5),
}

# ============================================================
# PYTEST FIXTURES
# ============================================================


@pytest_asyncio.fixture
async def store(tmp_path):
    s = UniverseStore(db_path=str(tmp_path / "universes.db"))
    await s.init()
    yield s
    await s.close()


@pytest.fixture
def registry(store):
    return UniverseRegistry(store, definitions=TEST_UNIVERSES)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def market():
    return FakeMarketClock(is_open=True)


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def quote_source():
    return FakeQuoteSource({
        "AAPL": snap("AAPL", 6.2),
        "MSFT": snap("MSFT", 2.1),
        "NVDA": snap("NVDA", -4.8),
        "XOM": snap("XOM", 3.5),
        "CVX": snap("CVX", 0.4),
    })


@pytest.fixture
def settings():
    return ScannerSettings(
        default_universe="TEST",
        scan_universes=["TEST", "OTHER"],
        normal_threshold_pct=3.0,
        strong_threshold_pct=5.0,
        min_force_scan_gap_minutes=3,
        min_price=5.0,
        request_delay_ms=0,
    )


@pytest.fixture
def scanner_factory(settings, registry, quote_source, market, clock, sleeper):
    """Factory for MarketScanner wired entirely to fakes."""
    def _make(**overrides):
        return MarketScanner(
            overrides.pop("settings", settings),
            overrides.pop("registry", registry),
            overrides.pop("quote_source", quote_source),
            market_clock=overrides.pop("market_clock", market),
            retry_policy=RetryPolicy(max_attempts=3, backoff_seconds=0.5, sleep=sleeper),
            clock=overrides.pop("clock", clock),
            sleep=overrides.pop("sleep", sleeper),
        )
    return _make


@pytest.fixture
def scanner(scanner_factory):
    return scanner_factory()
