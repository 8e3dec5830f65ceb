"""
Clock and datetime utilities.

Provides the injectable clock used for record timestamps and calendar dates,
plus helpers for the ISO formats persisted in the store.
"""

from datetime import datetime, timedelta
from typing import Protocol

import pytz
from dateutil import parser


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        """Return the current timezone-aware datetime."""
        ...


class SystemClock:
    """Wall clock in a configured timezone."""

    def __init__(self, timezone_str: str = "UTC") -> None:
        self.tz = pytz.timezone(timezone_str)

    def now(self) -> datetime:
        return datetime.now(pytz.utc).astimezone(self.tz)


def to_iso_timestamp(dt: datetime) -> str:
    """
    Format a datetime as a UTC ISO-8601 string with millisecond precision.

    Args:
        dt: Datetime (naive values are assumed to be UTC).

    Returns:
        String such as ``2026-02-01T14:00:00.000Z``.
    """
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    utc = dt.astimezone(pytz.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_iso_timestamp(value: str) -> datetime | None:
    """
    Parse an ISO-8601 timestamp into an aware datetime.

    Args:
        value: Timestamp string.

    Returns:
        Aware datetime, or None if the value cannot be parsed.
    """
    try:
        dt = parser.isoparse(value)
    except (ValueError, TypeError, OverflowError):
        return None
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt


def today_str(clock: Clock) -> str:
    """Return the clock's current calendar date as ``YYYY-MM-DD``."""
    return clock.now().date().isoformat()


def add_days(clock: Clock, days: int) -> str:
    """Return the calendar date ``days`` after the clock's today."""
    return (clock.now() + timedelta(days=days)).date().isoformat()


def latest_timestamp(clock: Clock, previous: object) -> str:
    """
    Return a timestamp for "now" that never sorts before ``previous``.

    Args:
        clock: Clock providing the current time.
        previous: Previously stored timestamp (any value).

    Returns:
        ISO timestamp greater than or equal to ``previous`` when it parses.
    """
    now = clock.now()
    if isinstance(previous, str):
        prior = parse_iso_timestamp(previous)
        if prior is not None and prior > now:
            return to_iso_timestamp(prior)
    return to_iso_timestamp(now)
