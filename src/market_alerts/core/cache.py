"""
Per-universe alert cache.

Each universe maps to an immutable CacheEntry; a completed scan swaps in a new
entry, so a reader always sees alerts and scan time from the same scan. Reads
never touch the network.
"""
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional

from market_alerts.core.models import Alert, CacheEntry, CachedAlerts
from market_alerts.logger import get_logger

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UniverseCache:
    def __init__(self, min_force_scan_gap_minutes: int = 3, clock: Callable[[], datetime] = utcnow):
        self.min_force_scan_gap_minutes = min_force_scan_gap_minutes
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def entry(self, universe_id: str) -> CacheEntry:
        """Current entry for a universe, created empty on first access."""
        entry = self._entries.get(universe_id)
        if entry is None:
            entry = self._entries[universe_id] = CacheEntry()
        return entry

    def replace(self, universe_id: str, alerts: Iterable[Alert], scan_time: datetime) -> CacheEntry:
        entry = CacheEntry(alerts=tuple(alerts), last_scan_time=scan_time)
        self._entries[universe_id] = entry
        logger.debug("Cache for %s replaced: %s alerts at %s", universe_id, len(entry.alerts), scan_time)
        return entry

    def _age(self, entry: CacheEntry) -> Optional[int]:
        if entry.last_scan_time is None:
            return None
        elapsed = (self._clock() - entry.last_scan_time).total_seconds()
        return max(0, int(elapsed // 60))

    def age_minutes(self, universe_id: str) -> Optional[int]:
        """Whole minutes since the last scan, or None if never scanned."""
        return self._age(self.entry(universe_id))

    def is_stale(self, universe_id: str) -> bool:
        age = self.age_minutes(universe_id)
        return age is None or age >= self.min_force_scan_gap_minutes

    def retry_after_minutes(self, universe_id: str) -> int:
        """Minutes left before a forced refresh is allowed; 0 means allowed now."""
        age = self.age_minutes(universe_id)
        if age is None:
            return 0
        return max(0, self.min_force_scan_gap_minutes - age)

    def read(self, universe_id: str, scan_in_progress: bool = False) -> CachedAlerts:
        entry = self.entry(universe_id)
        age = self._age(entry)
        return CachedAlerts(
            universe_id=universe_id,
            alerts=list(entry.alerts),
            last_scan=entry.last_scan_time,
            stale=age is None or age >= self.min_force_scan_gap_minutes,
            age_minutes=age,
            scan_in_progress=scan_in_progress,
        )
