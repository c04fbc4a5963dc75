# vigil/countdown.py
# Single-shot, cancelable countdown for the sealed-will waiting period (exactly-once expiry callback)

from __future__ import annotations

import itertools
import sys
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

# METRICS: countdown gauges/counters
try:
    from observability.metrics import countdown_fires_total, countdown_remaining_ms
except Exception:
    countdown_fires_total = countdown_remaining_ms = None  # type: ignore

OnExpire = Callable[["CountdownHandle"], None]


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class HandleState(str, Enum):
    ARMED = "ARMED"
    FIRED = "FIRED"
    CANCELLED = "CANCELLED"


@dataclass
class CountdownHandle:
    id: int
    duration_ms: float
    started_ms: float
    on_expire: OnExpire = field(repr=False)
    state: HandleState = HandleState.ARMED
    fired_how: Optional[str] = None  # natural|forced

    @property
    def inert(self) -> bool:
        return self.state != HandleState.ARMED


class CountdownTimer:
    """
    Owns every handle it starts and is the only thing that invokes their
    callbacks. Each handle fires at most once: the ARMED -> FIRED/CANCELLED
    switch happens under the timer lock and only the caller that performs it
    runs (or suppresses) the callback. Callbacks run outside the lock.

    Natural expiry is noticed by poll(), either called explicitly or from the
    optional background thread. `now` arguments are milliseconds on the
    timer's clock.
    """

    def __init__(self, *, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock
        self._mu = threading.Lock()
        self._ids = itertools.count(1)
        self._armed: Dict[int, CountdownHandle] = {}
        self._stop_evt = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def now(self) -> float:
        return self._clock() if self._clock is not None else _monotonic_ms()

    # -------- core ops --------

    def start(self, duration_ms: float, on_expire: OnExpire) -> CountdownHandle:
        h = CountdownHandle(
            id=next(self._ids),
            duration_ms=max(0.0, float(duration_ms)),
            started_ms=self.now(),
            on_expire=on_expire,
        )
        with self._mu:
            self._armed[h.id] = h
        return h

    def cancel(self, handle: CountdownHandle) -> bool:
        """True if this call disarmed the handle; after expiry it is a no-op."""
        with self._mu:
            if handle.state != HandleState.ARMED:
                return False
            handle.state = HandleState.CANCELLED
            self._armed.pop(handle.id, None)
            return True

    def force_expire_now(self, handle: CountdownHandle) -> bool:
        """Fire immediately. True if this call ran the callback."""
        if not self._claim(handle, "forced"):
            return False
        self._invoke(handle)
        return True

    def poll(self, now: Optional[float] = None) -> int:
        """Fire every armed handle whose time is up. Returns how many fired."""
        now = self.now() if now is None else now
        due: List[CountdownHandle] = []
        with self._mu:
            for h in list(self._armed.values()):
                if self._remaining(h, now) <= 0:
                    h.state = HandleState.FIRED
                    h.fired_how = "natural"
                    self._armed.pop(h.id, None)
                    due.append(h)
            soonest = min((self._remaining(h, now) for h in self._armed.values()), default=0.0)
        if countdown_remaining_ms is not None:
            try: countdown_remaining_ms.set(soonest)
            except Exception: pass

        errors: List[BaseException] = []
        for h in due:
            try:
                self._invoke(h)
            except Exception as e:
                errors.append(e)
        if errors:
            raise errors[0]
        return len(due)

    # -------- reads --------

    def remaining(self, handle: CountdownHandle, now: Optional[float] = None) -> float:
        now = self.now() if now is None else now
        if handle.state == HandleState.FIRED:
            return 0.0
        return max(0.0, self._remaining(handle, now))

    def progress_fraction(self, handle: CountdownHandle, now: Optional[float] = None) -> float:
        now = self.now() if now is None else now
        if handle.duration_ms <= 0:
            return 1.0
        frac = (now - handle.started_ms) / handle.duration_ms
        return max(0.0, min(1.0, frac))

    def armed(self) -> List[CountdownHandle]:
        with self._mu:
            return list(self._armed.values())

    # -------- background polling --------

    def start_background(self, interval_s: float = 0.25) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_evt.clear()
        self._thread = threading.Thread(target=self._loop, args=(max(0.005, float(interval_s)),),
                                        name="CountdownPoller", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_evt.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def _loop(self, interval_s: float) -> None:
        while not self._stop_evt.wait(interval_s):
            try:
                self.poll()
            except Exception as e:
                print(f"[countdown] expiry callback failed: {type(e).__name__}: {e}", file=sys.stderr)

    # -------- internals --------

    @staticmethod
    def _remaining(h: CountdownHandle, now: float) -> float:
        return h.duration_ms - (now - h.started_ms)

    def _claim(self, handle: CountdownHandle, how: str) -> bool:
        with self._mu:
            if handle.state != HandleState.ARMED:
                return False
            handle.state = HandleState.FIRED
            handle.fired_how = how
            self._armed.pop(handle.id, None)
            return True

    def _invoke(self, handle: CountdownHandle) -> None:
        if countdown_fires_total is not None:
            try: countdown_fires_total.labels(how=handle.fired_how or "natural").inc()
            except Exception: pass
        handle.on_expire(handle)


__all__ = ["HandleState", "CountdownHandle", "CountdownTimer"]
