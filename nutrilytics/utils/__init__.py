"""
Utilities Module
================

Helper functions and utility classes.
"""

from nutrilytics.utils.helpers import (
    Clock,
    is_quota_window_stale,
    next_utc_midnight,
    utc_now,
)

__all__ = ["Clock", "is_quota_window_stale", "next_utc_midnight", "utc_now"]
