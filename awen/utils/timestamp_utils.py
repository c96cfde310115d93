"""
Timestamp utilities for consistent time handling across the system.
"""

import time
from datetime import datetime, timedelta
from typing import Any, Optional


def now() -> datetime:
    """Current local time, the reference clock for pattern and preference ages."""
    return datetime.now()


def to_iso(value: datetime) -> str:
    return value.isoformat()


def parse_datetime(value: Any, default: Optional[datetime] = None) -> datetime:
    """Parse a persisted or transported time value.

    Accepts datetime objects, ISO-8601 strings and unix timestamps (seconds or
    milliseconds).

    Args:
        value: Raw value to parse
        default: Returned when the value is missing or unparseable (uses current time if None)

    Returns:
        datetime object
    """
    if isinstance(value, datetime):
        return value
    try:
        if isinstance(value, str) and value.strip():
            return datetime.fromisoformat(value.strip().replace('Z', '+00:00')).replace(tzinfo=None)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            # Millisecond timestamps come from browser clients
            seconds = value / 1000 if value > 1e11 else value
            return datetime.fromtimestamp(seconds)
    except (ValueError, OverflowError, OSError):
        pass
    return default if default is not None else now()


def is_older_than(value: datetime, days: int, reference: Optional[datetime] = None) -> bool:
    """True when value lies more than the given number of days before reference."""
    reference = reference or now()
    return value < reference - timedelta(days=days)


def elapsed_ms(start: float) -> int:
    """Milliseconds elapsed since a time.time() start mark."""
    return int((time.time() - start) * 1000)
