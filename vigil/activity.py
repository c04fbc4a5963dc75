# vigil/activity.py
# Activity monitor: last proof-of-life vs. an inactivity threshold ("days silent", strict expiry check)

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

# METRICS: days-silent gauge
try:
    from observability.metrics import days_silent as days_silent_gauge
except Exception:
    days_silent_gauge = None  # type: ignore

SECONDS_PER_DAY = 86_400.0
UTCNOW = lambda: datetime.now(timezone.utc)


def _utc(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def days_since_active(now: datetime, last_active: Optional[datetime]) -> float:
    if last_active is None:
        return 0.0
    return (_utc(now) - _utc(last_active)).total_seconds() / SECONDS_PER_DAY


def is_expired(now: datetime, last_active: Optional[datetime], threshold_days: float) -> bool:
    # Strictly greater: exactly `threshold_days` of silence is still alive.
    return days_since_active(now, last_active) > float(threshold_days)


@dataclass(frozen=True)
class InactivityReading:
    days_silent: float
    threshold_days: float
    expired: bool


@dataclass
class ActivityMonitor:
    """
    Holds the last proof-of-life timestamp. It never schedules itself: the
    state machine decides when to check (watcher loop or manual ping) and
    whether a heartbeat is legal in the current protocol status.
    """
    threshold_days: float = 180.0
    last_active: Optional[datetime] = None

    def record_heartbeat(self, now: Optional[datetime] = None) -> datetime:
        self.last_active = _utc(now or UTCNOW())
        return self.last_active

    def days_silent(self, now: Optional[datetime] = None) -> float:
        return days_since_active(now or UTCNOW(), self.last_active)

    def expired(self, now: Optional[datetime] = None) -> bool:
        return is_expired(now or UTCNOW(), self.last_active, self.threshold_days)

    def reading(self, now: Optional[datetime] = None) -> InactivityReading:
        now = now or UTCNOW()
        days = self.days_silent(now)
        if days_silent_gauge is not None:
            try: days_silent_gauge.set(days)
            except Exception: pass
        return InactivityReading(days_silent=days, threshold_days=float(self.threshold_days),
                                 expired=days > float(self.threshold_days))


__all__ = ["days_since_active", "is_expired", "InactivityReading", "ActivityMonitor"]
