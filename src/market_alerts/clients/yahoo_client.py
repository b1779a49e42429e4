"""
Yahoo Finance quote adapter built on yfinance.
yfinance is synchronous, so each lookup runs in a worker thread.
"""
import asyncio
import math
from typing import Any, Optional

import yfinance as yf
from yfinance.exceptions import YFRateLimitError

from market_alerts.config import QuotesSettings
from market_alerts.core.errors import RateLimitedError, SymbolNotFoundError, TransientQuoteError
from market_alerts.core.models import QuoteSnapshot
from market_alerts.logger import get_logger

logger = get_logger(__name__)

_RATE_LIMIT_MARKERS = ("Too Many Requests", "Rate limited", "Failed to get crumb")


def _number(val: Any) -> Optional[float]:
    if val is None:
        return None
    try:
        f = float(val)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(f) else f


def is_rate_limit_error(exc: BaseException) -> bool:
    if isinstance(exc, YFRateLimitError):
        return True
    msg = str(exc)
    return any(marker in msg for marker in _RATE_LIMIT_MARKERS)


class YahooFinanceClient:
    name = "yahoo"

    def __init__(self, settings: QuotesSettings, ticker_factory=yf.Ticker):
        self.settings = settings
        self._ticker_factory = ticker_factory

    def _lookup(self, symbol: str) -> QuoteSnapshot:
        info = self._ticker_factory(symbol).fast_info
        price = _number(info["last_price"])
        previous_close = _number(info["previous_close"])
        volume = _number(info["last_volume"]) or 0
        if price is None and previous_close is None:
            raise SymbolNotFoundError(symbol)
        return QuoteSnapshot(
            symbol=symbol,
            price=price,
            previous_close=previous_close,
            open=_number(info["open"]),
            volume=int(volume),
        )

    async def fetch_quote(self, symbol: str) -> QuoteSnapshot:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._lookup, symbol),
                timeout=self.settings.timeout_seconds,
            )
        except SymbolNotFoundError:
            raise
        except asyncio.TimeoutError as e:
            raise TransientQuoteError(symbol, f"Yahoo timeout for {symbol}") from e
        except KeyError as e:
            raise SymbolNotFoundError(symbol, f"Yahoo has no quote fields for {symbol}: {e}") from e
        except Exception as e:
            if is_rate_limit_error(e):
                raise RateLimitedError(symbol, f"429 from Yahoo for {symbol}") from e
            raise TransientQuoteError(symbol, f"Yahoo error for {symbol}: {e}") from e

    async def close(self) -> None:
        return None
