"""
Regular-session market hours: weekdays 09:30-16:00 exchange time, no holiday calendar.
"""
from datetime import datetime, time
from typing import Optional

import pytz

from market_alerts.core.models import MarketStatus

SESSION_OPEN = time(9, 30)
SESSION_CLOSE = time(16, 0)


class MarketClock:
    def __init__(self, timezone: str = "America/New_York"):
        self.timezone = timezone
        self._tz = pytz.timezone(timezone)

    def local_now(self, now: Optional[datetime] = None) -> datetime:
        """`now` (aware, or naive UTC) converted to exchange time."""
        if now is None:
            now = datetime.now(pytz.utc)
        elif now.tzinfo is None:
            now = pytz.utc.localize(now)
        return now.astimezone(self._tz)

    def is_open(self, now: Optional[datetime] = None) -> bool:
        local = self.local_now(now)
        if local.weekday() >= 5:
            return False
        return SESSION_OPEN <= local.time() < SESSION_CLOSE

    def status(self, now: Optional[datetime] = None) -> MarketStatus:
        local = self.local_now(now)
        return MarketStatus(
            is_open=self.is_open(local),
            current_time=local.strftime("%I:%M:%S %p"),
            timezone=self.timezone,
        )
