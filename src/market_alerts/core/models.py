"""
Data models for the scanner subsystem.
No implementation logic, only Pydantic models and typed structures.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field


class Severity(str, Enum):
    NORMAL = "normal"
    HIGH = "high"


class QuoteSnapshot(BaseModel):
    """Raw provider answer for one symbol. Fields may be missing or zero."""
    symbol: str = Field(..., description="Ticker symbol")
    price: Optional[float] = Field(None, description="Current/last price")
    previous_close: Optional[float] = Field(None, description="Previous session close")
    open: Optional[float] = Field(None, description="Session open")
    volume: int = Field(0, description="Session volume")


class Quote(BaseModel):
    """A validated point-in-time observation. Built only through quotes.build_quote()."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    price: float
    previous_close: float
    volume: int = 0
    timestamp: datetime

    @computed_field
    @property
    def change(self) -> float:
        return self.price - self.previous_close

    @computed_field
    @property
    def change_percent(self) -> float:
        return self.change * 100 / self.previous_close


class Alert(BaseModel):
    """A symbol whose move since previous close crossed the normal threshold."""
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., description="Ticker symbol")
    price: float = Field(..., description="Price at scan time")
    change: float = Field(..., description="Absolute change vs previous close")
    change_percent: float = Field(..., description="Percent change vs previous close")
    volume: int = Field(0, description="Session volume")
    previous_close: float = Field(..., description="Previous session close")
    severity: Severity
    universe_id: str
    scan_time: datetime


class CacheEntry(BaseModel):
    """One universe's latest scan. Replaced wholesale, never mutated."""
    model_config = ConfigDict(frozen=True)

    alerts: Tuple[Alert, ...] = ()
    last_scan_time: Optional[datetime] = None


class CachedAlerts(BaseModel):
    """What a cache read hands back to callers."""
    universe_id: str
    alerts: List[Alert] = Field(default_factory=list)
    last_scan: Optional[datetime] = None
    stale: bool = True
    age_minutes: Optional[int] = None
    scan_in_progress: bool = False

    @property
    def has_data(self) -> bool:
        return self.last_scan is not None


class MarketStatus(BaseModel):
    is_open: bool
    current_time: str = Field(..., description="Exchange-local wall clock, 12h format")
    timezone: str


class ScanResult(BaseModel):
    universe_id: str
    alerts: List[Alert] = Field(default_factory=list)
    last_scan: Optional[datetime] = None
    market_status: MarketStatus
    skipped: bool = False
    count: int = 0


class ScannerStatus(BaseModel):
    universe_id: str
    is_open: bool
    last_scan: Optional[datetime] = None
    alert_count: int = 0
    stale: bool = True
    age_minutes: Optional[int] = None
    scan_in_progress: bool = False
    market_status: MarketStatus


class UniverseDefinition(BaseModel):
    """Static universe configuration shipped with the service."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    symbols: Tuple[str, ...] = ()
    max_symbols: int = 50


class UniverseInfo(BaseModel):
    id: str
    name: str
    description: str
    symbols_count: int
    max_symbols: int
    symbols: Optional[List[str]] = None


class Insight(BaseModel):
    news: str
    quote: str
    timestamp: datetime
