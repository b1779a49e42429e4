import asyncio

import pytest

from market_alerts.core.cache import UniverseCache
from market_alerts.core.errors import (
    QuoteSourceConfigError,
    QuoteSourceUnavailableError,
    RateLimitedError,
    SymbolNotFoundError,
    TransientQuoteError,
    UnknownUniverseError,
)
from market_alerts.core.models import Severity
from market_alerts.core.orchestrator import ScanOrchestrator
from market_alerts.core.rate_limit import FixedDelaySequencer, RetryPolicy

from conftest import T0, snap


@pytest.fixture
def make_orchestrator(registry, quote_source, clock, market, sleeper):
    def _make(**overrides):
        return ScanOrchestrator(
            registry,
            overrides.pop("quote_source", quote_source),
            UniverseCache(3, clock=clock),
            market,
            normal_threshold_pct=3.0,
            strong_threshold_pct=5.0,
            min_price=5.0,
            sequencer=FixedDelaySequencer(0, sleep=sleeper),
            retry_policy=RetryPolicy(max_attempts=3, backoff_seconds=0.5, sleep=sleeper),
            clock=clock,
            **overrides,
        )
    return _make


@pytest.mark.asyncio
async def test_scan_detects_and_caches(make_orchestrator, quote_source):
    orch = make_orchestrator()

    result = await orch.scan_universe("TEST")

    assert result.skipped is False
    assert result.last_scan == T0
    assert [(a.symbol, a.severity) for a in result.alerts] == [
        ("AAPL", Severity.HIGH),
        ("NVDA", Severity.NORMAL),
    ]
    assert result.count == 2
    assert quote_source.calls == ["AAPL", "MSFT", "NVDA"]
    assert orch.cache.entry("TEST").alerts == tuple(result.alerts)


@pytest.mark.asyncio
async def test_closed_market_skips_scan_and_keeps_cache(make_orchestrator, quote_source, market):
    orch = make_orchestrator()
    await orch.scan_universe("TEST")
    before = orch.cache.entry("TEST")
    quote_source.calls.clear()
    market.open = False

    result = await orch.scan_universe("TEST")

    assert result.skipped is True
    assert result.market_status.is_open is False
    assert quote_source.calls == []
    assert orch.cache.entry("TEST") is before
    assert [a.symbol for a in result.alerts] == ["AAPL", "NVDA"]


@pytest.mark.asyncio
async def test_closed_market_ignored_when_hours_not_respected(make_orchestrator, quote_source, market):
    market.open = False
    orch = make_orchestrator(respect_market_hours=False)

    result = await orch.scan_universe("TEST")

    assert result.skipped is False
    assert quote_source.calls == ["AAPL", "MSFT", "NVDA"]


@pytest.mark.asyncio
async def test_one_failing_symbol_does_not_stop_the_scan(make_orchestrator, quote_source):
    quote_source.responses["MSFT"] = TransientQuoteError("MSFT")
    quote_source.responses["AAPL"] = None  # unknown symbol
    orch = make_orchestrator()

    result = await orch.scan_universe("TEST")

    assert [a.symbol for a in result.alerts] == ["NVDA"]
    assert quote_source.calls.count("MSFT") == 3


@pytest.mark.asyncio
async def test_cheap_and_incomplete_quotes_are_dropped(make_orchestrator, quote_source):
    quote_source.responses["AAPL"] = snap("AAPL", 10.0, previous_close=2.0)
    quote_source.responses["NVDA"] = snap("NVDA", -9.0, previous_close=0.0)
    orch = make_orchestrator()

    result = await orch.scan_universe("TEST")

    assert result.alerts == []
    assert result.last_scan == T0


@pytest.mark.asyncio
async def test_rate_limited_symbol_recovers_on_retry(make_orchestrator, quote_source, sleeper):
    quote_source.responses["AAPL"] = [RateLimitedError("AAPL"), snap("AAPL", 6.2)]
    orch = make_orchestrator()

    result = await orch.scan_universe("TEST")

    assert "AAPL" in [a.symbol for a in result.alerts]
    assert 0.5 in sleeper.delays


@pytest.mark.asyncio
async def test_every_symbol_failing_raises_and_leaves_cache(make_orchestrator, quote_source):
    orch = make_orchestrator()
    await orch.scan_universe("TEST")
    before = orch.cache.entry("TEST")
    for symbol in ("AAPL", "MSFT", "NVDA"):
        quote_source.responses[symbol] = TransientQuoteError(symbol)

    with pytest.raises(QuoteSourceUnavailableError) as exc_info:
        await orch.scan_universe("TEST")

    assert exc_info.value.attempted == 3
    assert orch.cache.entry("TEST") is before


@pytest.mark.asyncio
async def test_only_not_found_symbols_is_an_empty_scan(make_orchestrator, quote_source):
    quote_source.responses = {}
    orch = make_orchestrator()

    result = await orch.scan_universe("TEST")

    assert result.alerts == []
    assert result.last_scan == T0


@pytest.mark.asyncio
async def test_source_config_error_aborts_the_scan(make_orchestrator, quote_source):
    quote_source.responses["AAPL"] = QuoteSourceConfigError("no key")
    orch = make_orchestrator()

    with pytest.raises(QuoteSourceConfigError):
        await orch.scan_universe("TEST")
    assert quote_source.calls == ["AAPL"]
    assert orch.cache.entry("TEST").last_scan_time is None


@pytest.mark.asyncio
async def test_unknown_universe_fails_before_fetching(make_orchestrator, quote_source):
    orch = make_orchestrator()

    with pytest.raises(UnknownUniverseError):
        await orch.scan_universe("NOPE")
    with pytest.raises(UnknownUniverseError):
        orch.trigger("NOPE")
    assert quote_source.calls == []


@pytest.mark.asyncio
async def test_max_symbols_per_scan_caps_the_fetch(make_orchestrator, quote_source):
    orch = make_orchestrator(max_symbols_per_scan=2)

    await orch.scan_universe("TEST")

    assert quote_source.calls == ["AAPL", "MSFT"]


@pytest.mark.asyncio
async def test_concurrent_scans_of_one_universe_share_a_single_run(make_orchestrator, quote_source):
    quote_source.gate = asyncio.Event()
    orch = make_orchestrator()

    first = asyncio.create_task(orch.scan_universe("TEST"))
    second = asyncio.create_task(orch.scan_universe("TEST"))
    await asyncio.sleep(0)
    assert orch.is_scanning("TEST")
    assert orch.trigger("TEST") is orch.current_task("TEST")

    quote_source.gate.set()
    r1, r2 = await asyncio.gather(first, second)

    assert r1 == r2
    assert quote_source.calls == ["AAPL", "MSFT", "NVDA"]
    assert not orch.is_scanning("TEST")


@pytest.mark.asyncio
async def test_different_universes_scan_independently(make_orchestrator, quote_source):
    orch = make_orchestrator()

    test_result, other_result = await asyncio.gather(
        orch.scan_universe("TEST"), orch.scan_universe("OTHER")
    )

    assert [a.symbol for a in other_result.alerts] == ["XOM"]
    assert test_result.universe_id == "TEST"
    assert sorted(quote_source.calls) == ["AAPL", "CVX", "MSFT", "NVDA", "XOM"]


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_abort_the_scan(make_orchestrator, quote_source):
    quote_source.gate = asyncio.Event()
    orch = make_orchestrator()

    caller = asyncio.create_task(orch.scan_universe("TEST"))
    await asyncio.sleep(0)
    scan_task = orch.current_task("TEST")
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller

    quote_source.gate.set()
    result = await scan_task
    assert result.count == 2


@pytest.mark.asyncio
async def test_background_failure_is_logged_not_raised(make_orchestrator, quote_source, caplog):
    for symbol in ("AAPL", "MSFT", "NVDA"):
        quote_source.responses[symbol] = TransientQuoteError(symbol)
    orch = make_orchestrator()

    task = orch.trigger("TEST")
    await asyncio.wait([task])

    assert isinstance(task.exception(), QuoteSourceUnavailableError)
    assert "Scan scan:TEST failed" in caplog.text


@pytest.mark.asyncio
async def test_subscribers_receive_results_and_failures_are_isolated(make_orchestrator):
    orch = make_orchestrator()
    seen_sync, seen_async = [], []

    def broken(result):
        raise RuntimeError("boom")

    async def collect(result):
        seen_async.append(result.universe_id)

    orch.subscribe(broken)
    orch.subscribe(seen_sync.append)
    orch.subscribe(collect)

    await orch.scan_universe("TEST")
    await orch.wait_for_notifications()

    assert [r.universe_id for r in seen_sync] == ["TEST"]
    assert seen_async == ["TEST"]


@pytest.mark.asyncio
async def test_unsubscribed_callbacks_are_not_called(make_orchestrator):
    orch = make_orchestrator()
    seen = []
    orch.subscribe(seen.append)
    orch.unsubscribe(seen.append)
    orch.unsubscribe(seen.append)

    await orch.scan_universe("TEST")
    await orch.wait_for_notifications()

    assert seen == []


@pytest.mark.asyncio
async def test_skipped_scans_do_not_notify(make_orchestrator, market):
    market.open = False
    orch = make_orchestrator()
    seen = []
    orch.subscribe(seen.append)

    await orch.scan_universe("TEST")
    await orch.wait_for_notifications()

    assert seen == []


@pytest.mark.asyncio
async def test_failure_after_caller_cancelled_is_still_logged(make_orchestrator, quote_source, caplog):
    quote_source.gate = asyncio.Event()
    for symbol in ("AAPL", "MSFT", "NVDA"):
        quote_source.responses[symbol] = TransientQuoteError(symbol)
    orch = make_orchestrator()

    caller = asyncio.create_task(orch.scan_universe("TEST"))
    await asyncio.sleep(0)
    scan_task = orch.current_task("TEST")
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller

    quote_source.gate.set()
    await asyncio.wait([scan_task])
    await asyncio.sleep(0)

    assert isinstance(scan_task.exception(), QuoteSourceUnavailableError)
    assert "Scan scan:TEST failed" in caplog.text


@pytest.mark.asyncio
async def test_fetch_one_returns_quote_without_price_floor(make_orchestrator, quote_source):
    quote_source.responses["PENNY"] = snap("PENNY", 10.0, previous_close=1.0)
    orch = make_orchestrator()

    quote = await orch.fetch_one("PENNY")

    assert quote.symbol == "PENNY"
    assert quote.price == pytest.approx(1.1)
    assert quote.change_percent == pytest.approx(10.0)
    assert quote.timestamp == T0


@pytest.mark.asyncio
async def test_fetch_one_unknown_or_unusable_is_not_found(make_orchestrator, quote_source):
    quote_source.responses["HALT"] = snap("HALT", 0.0, previous_close=0.0)
    orch = make_orchestrator()

    with pytest.raises(SymbolNotFoundError):
        await orch.fetch_one("NOPE")
    with pytest.raises(SymbolNotFoundError):
        await orch.fetch_one("HALT")


@pytest.mark.asyncio
async def test_fetch_one_retries_then_gives_up(make_orchestrator, quote_source, sleeper):
    quote_source.responses["AAPL"] = RateLimitedError("AAPL")
    orch = make_orchestrator()

    with pytest.raises(RateLimitedError):
        await orch.fetch_one("AAPL")
    assert quote_source.calls == ["AAPL", "AAPL", "AAPL"]
    assert sleeper.delays == [0.5, 1.0]
