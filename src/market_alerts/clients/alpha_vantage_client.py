"""
Alpha Vantage GLOBAL_QUOTE adapter (requests, run in a worker thread).
"""
import asyncio
from typing import Any, Dict

import requests

from market_alerts.clients.finnhub_client import parse_price
from market_alerts.config import QuotesSettings
from market_alerts.core.errors import (
    QuoteSourceConfigError,
    RateLimitedError,
    SymbolNotFoundError,
    TransientQuoteError,
)
from market_alerts.core.models import QuoteSnapshot
from market_alerts.logger import get_logger

logger = get_logger(__name__)


def is_key_rejection(message: str) -> bool:
    # throttling notices also mention "API key", but never call it invalid
    text = message.lower()
    return "invalid" in text and ("apikey" in text or "api key" in text)


def parse_global_quote(symbol: str, data: Dict[str, Any]) -> QuoteSnapshot:
    """
    Map a GLOBAL_QUOTE response. Alpha Vantage reports throttling with a
    200 response carrying a "Note" or "Information" message.
    """
    if not isinstance(data, dict):
        raise TransientQuoteError(symbol, f"unexpected Alpha Vantage payload for {symbol}: {type(data).__name__}")
    message = str(data.get("Note") or data.get("Information") or "")
    if message:
        if is_key_rejection(message):
            raise QuoteSourceConfigError(f"Alpha Vantage rejected the API key: {message}")
        raise RateLimitedError(symbol, message)
    if "Error Message" in data:
        raise SymbolNotFoundError(symbol, data["Error Message"])
    quote = data.get("Global Quote") or {}
    if not quote:
        raise SymbolNotFoundError(symbol)
    return QuoteSnapshot(
        symbol=symbol,
        price=parse_price(quote.get("05. price")),
        previous_close=parse_price(quote.get("08. previous close")),
        open=parse_price(quote.get("02. open")),
        volume=int(parse_price(quote.get("06. volume")) or 0),
    )


class AlphaVantageClient:
    name = "alpha_vantage"

    def __init__(self, settings: QuotesSettings, session: requests.Session = None):
        self.settings = settings
        self.session = session or requests.Session()

    def _get(self, symbol: str) -> Dict[str, Any]:
        params = {
            "function": "GLOBAL_QUOTE",
            "symbol": symbol,
            "apikey": self.settings.alpha_vantage_api_key,
        }
        try:
            r = self.session.get(
                self.settings.alpha_vantage_base_url, params=params, timeout=self.settings.timeout_seconds
            )
        except requests.exceptions.RequestException as e:
            raise TransientQuoteError(symbol, f"Alpha Vantage request failed for {symbol}: {e}") from e
        if r.status_code == 429:
            raise RateLimitedError(symbol)
        if r.status_code in (401, 403):
            raise QuoteSourceConfigError(f"Alpha Vantage rejected the API key (HTTP {r.status_code})")
        if r.status_code >= 400:
            raise TransientQuoteError(symbol, f"Alpha Vantage HTTP {r.status_code} for {symbol}")
        try:
            return r.json()
        except ValueError as e:
            raise TransientQuoteError(symbol, f"Alpha Vantage returned invalid JSON for {symbol}") from e

    async def fetch_quote(self, symbol: str) -> QuoteSnapshot:
        data = await asyncio.to_thread(self._get, symbol)
        return parse_global_quote(symbol, data)

    async def close(self) -> None:
        self.session.close()
