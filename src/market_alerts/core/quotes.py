"""
Quote construction and the adapter contract the scanner consumes.
"""
from datetime import datetime
from typing import Optional, Protocol

from market_alerts.core.models import Quote, QuoteSnapshot


class QuoteSource(Protocol):
    """Anything that can fetch a single symbol's quote.

    Implementations raise QuoteFetchError subclasses for per-symbol failures and
    QuoteSourceConfigError when they cannot work at all.
    """

    name: str

    async def fetch_quote(self, symbol: str) -> QuoteSnapshot:
        ...

    async def close(self) -> None:
        ...


def build_quote(snapshot: QuoteSnapshot, min_price: float, timestamp: datetime) -> Optional[Quote]:
    """
    Turn a provider snapshot into a Quote, or None when it is unusable.

    Rejected: missing or non-positive price, price below `min_price`,
    missing or zero previous close.
    """
    price = snapshot.price
    previous_close = snapshot.previous_close
    if price is None or price <= 0 or price < min_price:
        return None
    if not previous_close:
        return None
    return Quote(
        symbol=snapshot.symbol,
        price=float(price),
        previous_close=float(previous_close),
        volume=int(snapshot.volume or 0),
        timestamp=timestamp,
    )
