# tests/vigil_test/watcher_test.py
# Background watcher: countdown polling, inactivity trips, periodic advisory sentinel scans

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone

from vigil.countdown import CountdownTimer
from vigil.watcher import Watcher, start_watcher
from will.collaborators import SimulatedLedger
from will.config import WillConfig
from will.machine import WillStateMachine
from will.model import ProtocolStatus

OWNER = "0x" + "a1" * 20
BENS = [{"name": "Alice", "percentage": 100, "walletAddress": "0x" + "b2" * 20}]


def wait_until(pred, *, timeout=3.0, interval=0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pred():
            return True
        time.sleep(interval)
    return False


class Interp:
    def interpret(self, text, locale):
        return list(BENS)


class CountingSentinel:
    def __init__(self): self.calls = 0
    def scan(self, handle, context, locale):
        self.calls += 1
        return {"status": "SECURE"}


class Wall:
    def __init__(self): self.t = datetime(2025, 1, 1, tzinfo=timezone.utc)
    def __call__(self): return self.t


def _machine(*, timer=None, clock=None, sentinel=None, duration_ms=30_000):
    m = WillStateMachine(
        ledger=SimulatedLedger(OWNER, 10 ** 18),
        interpreter=Interp(),
        sentinel=sentinel,
        timer=timer or CountdownTimer(),
        config=WillConfig(),
        clock=clock,
    )
    m.establish_identity("owner")
    m.link_wallet(OWNER)
    m.interpret_will("all to alice")
    assert m.seal(duration_ms=duration_ms).accepted
    return m


def test_step_polls_countdown():
    ms = {"t": 0.0}
    m = _machine(timer=CountdownTimer(clock=lambda: ms["t"]), duration_ms=1000)
    w = Watcher(m, sentinel_interval_s=0)
    w.step()
    assert m.status == ProtocolStatus.MONITORING
    ms["t"] = 1000.0
    w.step()
    assert m.status == ProtocolStatus.ACTIVATED
    assert m.snapshot().trip_reason == "countdown"


def test_step_checks_inactivity():
    wall = Wall()
    m = _machine(clock=wall, duration_ms=10 ** 12)
    w = Watcher(m, sentinel_interval_s=0)
    w.step()
    assert m.status == ProtocolStatus.MONITORING
    wall.t += timedelta(days=181)
    w.step()
    assert m.status == ProtocolStatus.ACTIVATED
    assert m.snapshot().trip_reason == "inactivity"


def test_sentinel_scans_on_interval_only_while_monitoring():
    mono = {"t": 0.0}
    sentinel = CountingSentinel()
    m = _machine(sentinel=sentinel, duration_ms=10 ** 12)
    w = Watcher(m, sentinel_interval_s=30, clock=lambda: mono["t"])
    w.step()
    w.step()
    assert sentinel.calls == 1
    mono["t"] = 31.0
    w.step()
    assert sentinel.calls == 2
    m.trigger_now()
    mono["t"] = 100.0
    w.step()
    assert sentinel.calls == 2
    assert w.steps == 4


def test_background_watcher_trips_on_countdown():
    m = _machine(duration_ms=20)
    watcher, stop_evt = start_watcher(m, interval_s=0.005, sentinel_interval_s=0)
    try:
        assert wait_until(lambda: m.status == ProtocolStatus.ACTIVATED)
        assert wait_until(lambda: watcher.steps > 1)
    finally:
        stop_evt.set()
