"""Time utilities for consistent timestamp handling."""

import time
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def property_today(tz_name: str, now: datetime | None = None) -> date:
    """Return the calendar date at the property's local timezone.

    Args:
        tz_name: IANA timezone name stored on the property (e.g. "Africa/Johannesburg").
        now: Optional reference instant (defaults to utc_now()).
    """
    now = now or utc_now()
    return now.astimezone(ZoneInfo(tz_name)).date()


def monotonic() -> float:
    """Monotonic seconds, for throttling and polling intervals."""
    return time.monotonic()
