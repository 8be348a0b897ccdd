"""Time-range and interval helpers."""

import re
from datetime import datetime, timedelta
from typing import Optional

from src.api_errors.exceptions import ValidationError
from src.monitoring.config import TIME_RANGES
from src.monitoring.models import utcnow

CUSTOM_RANGE = "custom"
_INTERVAL_RE = re.compile(r"^(\d+)([smh])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600}


def resolve_time_range(
    time_range: str = "last_24_hours",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """Turn a named range (or ``custom`` with explicit bounds) into datetimes.

    ``custom`` without a start falls back to the last 24 hours.
    """
    end = end or now or utcnow()
    if time_range == CUSTOM_RANGE:
        if start is not None:
            return start, end
        return end - timedelta(seconds=TIME_RANGES["last_24_hours"]), end
    if time_range not in TIME_RANGES:
        raise ValidationError(f"Unknown time range: {time_range}", field="time_range")
    return end - timedelta(seconds=TIME_RANGES[time_range]), end


def parse_interval(interval: str) -> Optional[timedelta]:
    """Parse "30s", "5m" or "1h"; None when the format is not recognized."""
    match = _INTERVAL_RE.match(interval.strip()) if interval else None
    if not match:
        return None
    return timedelta(seconds=int(match.group(1)) * _UNIT_SECONDS[match.group(2)])
