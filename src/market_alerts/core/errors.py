"""
Error taxonomy for the scanner.

Per-symbol failures (QuoteFetchError) never leave the orchestrator. Whole-scan
failures (QuoteSourceError) reach synchronous callers and leave the cache untouched.
"""
from typing import Optional


class MarketAlertsError(Exception):
    """Base class for every error raised by this package."""


# --- per-symbol upstream failures ---

class QuoteFetchError(MarketAlertsError):
    def __init__(self, symbol: str, message: Optional[str] = None):
        self.symbol = symbol
        super().__init__(message or f"quote fetch failed for {symbol}")


class SymbolNotFoundError(QuoteFetchError):
    def __init__(self, symbol: str, message: Optional[str] = None):
        super().__init__(symbol, message or f"no quote available for {symbol}")


class RetryableQuoteError(QuoteFetchError):
    """Failures worth retrying with backoff."""


class RateLimitedError(RetryableQuoteError):
    def __init__(self, symbol: str, message: Optional[str] = None):
        super().__init__(symbol, message or f"rate limited while fetching {symbol}")


class TransientQuoteError(RetryableQuoteError):
    pass


# --- whole-scan failures ---

class QuoteSourceError(MarketAlertsError):
    pass


class QuoteSourceConfigError(QuoteSourceError):
    """Missing credentials or an unknown provider."""


class QuoteSourceUnavailableError(QuoteSourceError):
    def __init__(self, universe_id: str, attempted: int):
        self.universe_id = universe_id
        self.attempted = attempted
        super().__init__(
            f"quote source unreachable: all {attempted} symbols failed for {universe_id}"
        )


# --- validation ---

class UniverseError(MarketAlertsError):
    pass


class UnknownUniverseError(UniverseError):
    def __init__(self, universe_id: str):
        self.universe_id = universe_id
        super().__init__(f"Universe {universe_id!r} not found")


class TooManySymbolsError(UniverseError):
    def __init__(self, universe_id: str, max_symbols: int, count: int):
        self.universe_id = universe_id
        self.max_symbols = max_symbols
        self.count = count
        super().__init__(
            f"Maximum {max_symbols} symbols allowed in {universe_id} (got {count})"
        )


class InvalidSymbolError(UniverseError):
    def __init__(self, symbol: object):
        self.symbol = symbol
        super().__init__(f"Invalid symbol: {symbol!r}")


# --- policy rejections ---

class TooSoonError(MarketAlertsError):
    """A forced refresh was requested before the minimum gap elapsed."""

    def __init__(self, universe_id: str, retry_after_minutes: int):
        self.universe_id = universe_id
        self.retry_after_minutes = retry_after_minutes
        super().__init__(
            f"Refresh for {universe_id} requested too soon; retry in {retry_after_minutes} min"
        )


# --- assistant ---

class AssistantError(MarketAlertsError):
    pass


class AssistantConfigError(AssistantError):
    pass
