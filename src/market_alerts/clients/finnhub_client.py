import aiohttp
import asyncio
from typing import Any, Dict, Optional

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


def parse_price(val) -> Optional[float]:
    """
    Parse price if numeric or numeric-like string; else None
    """
    if val is None:
        return None
    if isinstance(val, (int, float)):
        return float(val)
    s = str(val).replace(",", "").strip()
    try:
        return float(s)
    except ValueError:
        return None


def parse_finnhub_quote(symbol: str, data: Dict[str, Any]) -> QuoteSnapshot:
    """
    Map a Finnhub /quote payload (c=current, pc=previous close, o=open, v=volume).
    Finnhub answers unknown symbols with an all-zero payload.
    """
    if not isinstance(data, dict):
        raise TransientQuoteError(symbol, f"unexpected Finnhub payload for {symbol}: {type(data).__name__}")
    price = parse_price(data.get("c"))
    previous_close = parse_price(data.get("pc"))
    if not price and not previous_close:
        raise SymbolNotFoundError(symbol)
    return QuoteSnapshot(
        symbol=symbol,
        price=price,
        previous_close=previous_close,
        open=parse_price(data.get("o")),
        volume=int(parse_price(data.get("v")) or 0),
    )


def raise_for_finnhub_status(symbol: str, status: int, body: str = "") -> None:
    if status < 400:
        return
    if status == 429:
        raise RateLimitedError(symbol)
    if status in (401, 403):
        raise QuoteSourceConfigError(f"Finnhub rejected the API key (HTTP {status})")
    if status == 404:
        raise SymbolNotFoundError(symbol)
    raise TransientQuoteError(symbol, f"Finnhub HTTP {status} for {symbol}: {body[:200]}")


class FinnhubClient:
    """Finnhub /quote adapter. One shared aiohttp session, opened lazily."""

    name = "finnhub"

    def __init__(self, settings: QuotesSettings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self.base_url = settings.finnhub_base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.settings.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def fetch_quote(self, symbol: str) -> QuoteSnapshot:
        api_key = self.settings.finnhub_api_key
        url = f"{self.base_url}/quote"
        params = {"symbol": symbol, "token": api_key}
        session = self._get_session()
        try:
            async with session.get(url, params=params) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise_for_finnhub_status(symbol, response.status, body)
                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise TransientQuoteError(symbol, f"Finnhub returned invalid JSON for {symbol}") from e
        except asyncio.TimeoutError as e:
            raise TransientQuoteError(symbol, f"Finnhub timeout for {symbol}") from e
        except aiohttp.ClientError as e:
            raise TransientQuoteError(symbol, f"Finnhub request failed for {symbol}: {e}") from e
        return parse_finnhub_quote(symbol, data)

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
