"""
Helper Function Tests
=====================
"""

from datetime import datetime, timedelta, timezone

from nutrilytics.utils.helpers import (
    days_until,
    ensure_utc,
    from_millis,
    is_quota_window_stale,
    next_utc_midnight,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def test_quota_window_same_day_is_fresh():
    assert is_quota_window_stale(NOW.replace(hour=0, minute=0), NOW) is False
    assert is_quota_window_stale(NOW, NOW.replace(hour=23, minute=59)) is False


def test_quota_window_previous_day_is_stale():
    assert is_quota_window_stale(NOW - timedelta(days=1), NOW) is True
    assert is_quota_window_stale(NOW.replace(hour=23, minute=59), NOW + timedelta(hours=12)) is True


def test_missing_reset_time_is_stale():
    assert is_quota_window_stale(None, NOW) is True


def test_naive_timestamps_are_treated_as_utc():
    naive = datetime(2026, 3, 10, 1, 0)
    assert ensure_utc(naive) == datetime(2026, 3, 10, 1, 0, tzinfo=timezone.utc)
    assert is_quota_window_stale(naive, NOW) is False


def test_next_utc_midnight():
    assert next_utc_midnight(NOW) == datetime(2026, 3, 11, tzinfo=timezone.utc)


def test_days_until_rounds_up():
    assert days_until(NOW + timedelta(days=2, hours=1), NOW) == 3
    assert days_until(NOW + timedelta(days=2), NOW) == 2
    assert days_until(NOW - timedelta(hours=1), NOW) == 0


def test_from_millis():
    assert from_millis(None) is None
    assert from_millis(int(NOW.timestamp() * 1000)) == NOW
