"""
Alert detection: classify a batch of quotes against the configured thresholds.
"""
from datetime import datetime, timezone
from typing import List, Mapping, Optional

from market_alerts.core.models import Alert, Quote, Severity


def classify(change_percent: float, normal_threshold_pct: float, strong_threshold_pct: float) -> Optional[Severity]:
    """Severity for a move, or None when it stays under the normal threshold."""
    magnitude = abs(change_percent)
    if magnitude < normal_threshold_pct:
        return None
    if magnitude >= strong_threshold_pct:
        return Severity.HIGH
    return Severity.NORMAL


def detect(
    quotes: Mapping[str, Quote],
    normal_threshold_pct: float,
    strong_threshold_pct: float,
    *,
    universe_id: str = "",
    scan_time: Optional[datetime] = None,
) -> List[Alert]:
    """
    Return alerts for every quote whose |change %| reaches the normal threshold,
    sorted by |change %| descending. Ties keep the input order.

    Pure function: symbols missing from `quotes` are simply not considered.
    """
    if strong_threshold_pct < normal_threshold_pct:
        raise ValueError(
            f"strong threshold ({strong_threshold_pct}) is below normal threshold ({normal_threshold_pct})"
        )
    scan_time = scan_time or datetime.now(timezone.utc)

    alerts: List[Alert] = []
    for symbol, quote in quotes.items():
        change_percent = quote.change_percent
        severity = classify(change_percent, normal_threshold_pct, strong_threshold_pct)
        if severity is None:
            continue
        alerts.append(
            Alert(
                symbol=symbol,
                price=quote.price,
                change=quote.change,
                change_percent=change_percent,
                volume=quote.volume,
                previous_close=quote.previous_close,
                severity=severity,
                universe_id=universe_id,
                scan_time=scan_time,
            )
        )

    # sorted() is stable, so equal magnitudes keep insertion order
    return sorted(alerts, key=lambda a: abs(a.change_percent), reverse=True)
