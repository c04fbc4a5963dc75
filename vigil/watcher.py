# vigil/watcher.py
# Background vigil: polls the countdown, checks inactivity and runs periodic advisory sentinel scans

from __future__ import annotations

import sys
import threading
import time
from typing import Any, Callable, Optional, Tuple

from will.model import ProtocolStatus

ContextProvider = Callable[[], str]


class Watcher:
    """
    One step = one pass over every check. The thread in start_watcher() just
    calls step() on a fixed cadence; tests drive step() directly.
    """

    def __init__(
        self,
        machine: Any,
        *,
        sentinel_interval_s: float = 30.0,
        context_provider: Optional[ContextProvider] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.machine = machine
        self.sentinel_interval_s = float(sentinel_interval_s)
        self.context_provider = context_provider
        self._clock = clock
        self._last_scan: Optional[float] = None
        self.steps = 0

    def _now(self) -> float:
        return self._clock() if self._clock is not None else time.monotonic()

    def step(self) -> None:
        self.steps += 1
        # natural countdown expiry
        self.machine.timer.poll()

        if self.machine.status != ProtocolStatus.MONITORING:
            return
        self.machine.check_inactivity()

        if self.sentinel_interval_s > 0 and self.machine.status == ProtocolStatus.MONITORING:
            now = self._now()
            if self._last_scan is None or now - self._last_scan >= self.sentinel_interval_s:
                self._last_scan = now
                ctx = self.context_provider() if self.context_provider is not None else ""
                self.machine.scan_sentinel(ctx)


def start_watcher(
    machine: Any,
    *,
    interval_s: float = 1.0,
    sentinel_interval_s: float = 30.0,
    context_provider: Optional[ContextProvider] = None,
) -> Tuple[Watcher, threading.Event]:
    """
    Spin up a daemon thread running Watcher.step() every `interval_s`.
    Returns (watcher, stop_evt); set stop_evt to end the loop.
    """
    watcher = Watcher(machine, sentinel_interval_s=sentinel_interval_s, context_provider=context_provider)
    stop_evt = threading.Event()

    def watcher_thread():
        while not stop_evt.is_set():
            try:
                watcher.step()
            except Exception as e:
                print(f"[watcher] step failed: {type(e).__name__}: {e}", file=sys.stderr)
            stop_evt.wait(max(0.005, float(interval_s)))

    t = threading.Thread(target=watcher_thread, name="will-watcher", daemon=True)
    t.start()
    return watcher, stop_evt


__all__ = ["Watcher", "start_watcher"]
