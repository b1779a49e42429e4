"""
Universe registry: built-in universe definitions plus persisted symbol overrides.
"""
import re
from typing import Dict, Iterable, List, Mapping, Optional

from market_alerts.core.errors import InvalidSymbolError, TooManySymbolsError, UnknownUniverseError
from market_alerts.core.models import UniverseDefinition, UniverseInfo
from market_alerts.db.dbadapter import UniverseStore
from market_alerts.logger import get_logger

logger = get_logger(__name__)

_SYMBOL_RE = re.compile(r"^[A-Z0-9][A-Z0-9.\-]{0,9}$")

SP100_SYMBOLS = (
    "AAPL", "ABBV", "ABT", "ACN", "ADBE", "AIG", "AMD", "AMGN", "AMT", "AMZN",
    "AVGO", "AXP", "BA", "BAC", "BK", "BKNG", "BLK", "BMY", "BRK.B", "C",
    "CAT", "CHTR", "CL", "CMCSA", "COF", "COP", "COST", "CRM", "CSCO", "CVS",
    "CVX", "DE", "DHR", "DIS", "DUK", "EMR", "F", "FDX", "GD", "GE",
    "GILD", "GM", "GOOG", "GOOGL", "GS", "HD", "HON", "IBM", "INTC", "INTU",
    "ISRG", "JNJ", "JPM", "KHC", "KO", "LIN", "LLY", "LMT", "LOW", "MA",
    "MCD", "MDLZ", "MDT", "MET", "META", "MMM", "MO", "MRK", "MS", "MSFT",
    "NEE", "NFLX", "NKE", "NOW", "NVDA", "ORCL", "PEP", "PFE", "PG", "PLTR",
    "PM", "PYPL", "QCOM", "RTX", "SBUX", "SCHW", "SO", "SPG", "T", "TGT",
    "TMO", "TMUS", "TSLA", "TXN", "UNH", "UNP", "UPS", "USB", "V", "VZ",
    "WFC", "WMT", "XOM",
)

DEFAULT_UNIVERSES: Dict[str, UniverseDefinition] = {
    u.id: u
    for u in (
        UniverseDefinition(
            id="SP100",
            name="S&P 100",
            description="The 100 largest US companies",
            symbols=SP100_SYMBOLS,
            max_symbols=100,
        ),
        UniverseDefinition(
            id="TECH_USA",
            name="US Technology",
            description="Large-cap US technology",
            symbols=(
                "AAPL", "MSFT", "GOOGL", "AMZN", "NVDA", "META", "TSLA", "AVGO", "ADBE", "CSCO",
                "CRM", "AMD", "INTC", "ORCL", "QCOM", "TXN", "AMAT", "LRCX", "KLAC", "NXPI",
                "ANSS", "CDNS", "SNPS", "FTNT", "ZM", "TEAM", "NET", "DDOG", "MDB", "SNOW",
                "CRWD", "OKTA", "DOCN", "WDAY", "CDW",
            ),
            max_symbols=50,
        ),
        UniverseDefinition(
            id="BANKS_USA",
            name="Banks & Financials",
            description="US banks and financial services",
            symbols=(
                "JPM", "BAC", "WFC", "GS", "MS", "C", "BLK", "AXP", "COF", "SCHW",
                "TFC", "PNC", "USB", "BK", "STT", "CFG", "MTB", "ZION", "HBAN", "KEY",
            ),
            max_symbols=50,
        ),
        UniverseDefinition(
            id="ENERGY",
            name="Energy & Commodities",
            description="Energy sector and commodity producers",
            symbols=(
                "XOM", "CVX", "SLB", "EOG", "COP", "MPC", "VLO", "PSX", "HES", "FANG",
                "DVN", "CTRA", "MRO", "OVV", "APA",
            ),
            max_symbols=50,
        ),
        UniverseDefinition(
            id="CUSTOM",
            name="My Watchlist",
            description="Personal configurable watchlist",
            symbols=(),
            max_symbols=50,
        ),
    )
}


def normalize_symbols(symbols: Iterable[object]) -> List[str]:
    """
    Uppercase, trim, drop empties and dedupe while keeping first-seen order.

    Raises InvalidSymbolError for non-strings or malformed tickers.
    """
    seen = set()
    out: List[str] = []
    for raw in symbols:
        if not isinstance(raw, str):
            raise InvalidSymbolError(raw)
        symbol = raw.strip().upper()
        if not symbol:
            continue
        if not _SYMBOL_RE.match(symbol):
            raise InvalidSymbolError(raw)
        if symbol in seen:
            continue
        seen.add(symbol)
        out.append(symbol)
    return out


class UniverseRegistry:
    def __init__(self, store: UniverseStore, definitions: Optional[Mapping[str, UniverseDefinition]] = None):
        self.store = store
        self.definitions: Dict[str, UniverseDefinition] = dict(definitions or DEFAULT_UNIVERSES)

    def ids(self) -> List[str]:
        return list(self.definitions)

    def get(self, universe_id: str) -> UniverseDefinition:
        definition = self.definitions.get(universe_id)
        if definition is None:
            raise UnknownUniverseError(universe_id)
        return definition

    async def list_symbols(self, universe_id: str) -> List[str]:
        """Ordered, deduplicated symbols for a universe, at most max_symbols long."""
        definition = self.get(universe_id)
        saved = await self.store.get_symbols(universe_id)
        symbols = saved if saved is not None else list(definition.symbols)
        return normalize_symbols(symbols)[: definition.max_symbols]

    async def update_symbols(self, universe_id: str, symbols: Iterable[object]) -> List[str]:
        """Validate, normalize and persist a universe's symbol list."""
        definition = self.get(universe_id)
        if isinstance(symbols, (str, bytes)):
            raise InvalidSymbolError(symbols)
        normalized = normalize_symbols(symbols)
        if len(normalized) > definition.max_symbols:
            raise TooManySymbolsError(universe_id, definition.max_symbols, len(normalized))
        await self.store.save_symbols(universe_id, normalized)
        logger.info("Universe %s updated: %s symbols", universe_id, len(normalized))
        return normalized

    async def reset_symbols(self, universe_id: str) -> List[str]:
        """Drop a saved override; the universe goes back to its built-in symbols."""
        self.get(universe_id)
        if await self.store.delete_symbols(universe_id):
            logger.info("Universe %s reset to defaults", universe_id)
        return await self.list_symbols(universe_id)

    async def info(self, universe_id: str, include_symbols: bool = False) -> UniverseInfo:
        definition = self.get(universe_id)
        symbols = await self.list_symbols(universe_id)
        return UniverseInfo(
            id=definition.id,
            name=definition.name,
            description=definition.description,
            symbols_count=len(symbols),
            max_symbols=definition.max_symbols,
            symbols=symbols if include_symbols else None,
        )

    async def list_universes(self) -> List[UniverseInfo]:
        return [await self.info(universe_id) for universe_id in self.definitions]
