# tests/vigil_test/activity_test.py
from datetime import datetime, timedelta, timezone

from vigil.activity import ActivityMonitor, days_since_active, is_expired

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_days_since_active_fractional():
    assert days_since_active(T0 + timedelta(hours=36), T0) == 1.5
    assert days_since_active(T0, None) == 0.0


def test_naive_timestamps_are_treated_as_utc():
    naive = datetime(2025, 3, 1, 12, 0)
    assert days_since_active(T0 + timedelta(days=2), naive) == 2.0


def test_expiry_is_strictly_greater_than_threshold():
    assert not is_expired(T0 + timedelta(days=180), T0, 180)
    assert is_expired(T0 + timedelta(days=180, seconds=1), T0, 180)
    assert not is_expired(T0 + timedelta(days=10_000), None, 180)


def test_monitor_heartbeat_resets_silence():
    mon = ActivityMonitor(threshold_days=30)
    mon.record_heartbeat(T0)
    assert mon.expired(T0 + timedelta(days=31))
    mon.record_heartbeat(T0 + timedelta(days=31))
    assert not mon.expired(T0 + timedelta(days=31))
    reading = mon.reading(T0 + timedelta(days=45))
    assert reading.days_silent == 14.0
    assert reading.threshold_days == 30.0
    assert reading.expired is False
