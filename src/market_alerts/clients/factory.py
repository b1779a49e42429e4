"""
Quote source selection from configuration.
"""
from market_alerts.clients.alpha_vantage_client import AlphaVantageClient
from market_alerts.clients.finnhub_client import FinnhubClient
from market_alerts.clients.yahoo_client import YahooFinanceClient
from market_alerts.config import QuotesSettings
from market_alerts.core.errors import QuoteSourceConfigError
from market_alerts.core.quotes import QuoteSource

PROVIDERS = {
    "finnhub": FinnhubClient,
    "yahoo": YahooFinanceClient,
    "alpha_vantage": AlphaVantageClient,
}


def build_quote_source(settings: QuotesSettings) -> QuoteSource:
    try:
        cls = PROVIDERS[settings.provider]
    except KeyError:
        raise QuoteSourceConfigError(f"Unknown quote provider: {settings.provider}") from None
    return cls(settings)
