"""
Helper Functions
================

Time helpers shared by the quota, trial and webhook code paths.

All datetimes handled by the engine are timezone-aware UTC. The quota
day boundary is UTC midnight; ``is_quota_window_stale`` is the single
predicate used by both the lazy reset on read and the scheduled sweep.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC datetime with timezone info."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and normalise aware ones."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_midnight(dt: datetime) -> datetime:
    """Start of the UTC calendar day containing *dt*."""
    dt = ensure_utc(dt)
    return datetime(dt.year, dt.month, dt.day, tzinfo=timezone.utc)


def next_utc_midnight(now: datetime) -> datetime:
    """Start of the next UTC calendar day after *now*."""
    return utc_midnight(now) + timedelta(days=1)


def is_quota_window_stale(last_reset_at: Optional[datetime], now: datetime) -> bool:
    """
    True when the quota window that *last_reset_at* belongs to has closed.

    A missing timestamp counts as stale so that legacy rows get reset.
    """
    if last_reset_at is None:
        return True
    return utc_midnight(now) > utc_midnight(last_reset_at)


def from_millis(ms: Optional[int]) -> Optional[datetime]:
    """Convert epoch milliseconds (RevenueCat format) to an aware datetime."""
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def days_until(target: datetime, now: datetime) -> int:
    """Whole days remaining until *target*, rounded up; 0 once passed."""
    seconds = (ensure_utc(target) - ensure_utc(now)).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 86400)
