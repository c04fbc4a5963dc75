# tests/will_test/health_test.py
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from vigil.countdown import CountdownTimer
from will.collaborators import SimulatedLedger
from will.config import WillConfig
from will.health import snapshot
from will.machine import WillStateMachine

OWNER = "0x" + "a1" * 20
T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


class Interp:
    def interpret(self, text, locale):
        return [
            {"name": "A", "percentage": 50, "walletAddress": "0x" + "b2" * 20},
            {"name": "B", "percentage": 50, "walletAddress": "0x" + "c3" * 20},
        ]


def _machine(ms):
    ledger = SimulatedLedger(OWNER, 10 ** 18, fail_for=["0x" + "c3" * 20])
    m = WillStateMachine(ledger=ledger, interpreter=Interp(), timer=CountdownTimer(clock=lambda: ms["t"]),
                         config=WillConfig(), clock=lambda: T0)
    m.establish_identity("owner")
    m.link_wallet(OWNER)
    m.interpret_will("half each")
    m.seal(duration_ms=1000)
    return m


def test_snapshot_while_monitoring_is_json_serializable():
    ms = {"t": 0.0}
    m = _machine(ms)
    ms["t"] = 250.0
    snap = snapshot(m, now=T0 + timedelta(days=2))
    json.dumps(snap)
    assert snap["status"] == "MONITORING"
    assert snap["identity"] == "owner"
    assert snap["activity"]["days_silent"] == 2.0
    assert snap["pending_will"]["status"] == "PENDING"
    assert snap["pending_will"]["countdown_remaining_ms"] == 750.0
    assert snap["pending_will"]["countdown_progress"] == 0.25
    assert snap["plan"] is None and snap["last_execution"] is None


def test_snapshot_after_partial_failure():
    ms = {"t": 0.0}
    m = _machine(ms)
    m.trigger_now()
    m.confirm_execution()
    snap = snapshot(m, max_list=5)
    json.dumps(snap)
    assert snap["status"] == "EXECUTED"
    assert snap["trip_reason"] == "forced"
    assert snap["last_execution"]["failed_beneficiaries"] == ["B"]
    assert snap["history"]["by_status"] == {"SUCCESS": 1, "FAILED": 1}
    assert len(snap["events"]) == 5
    assert snap["plan"]["items"][0]["amount"] == str(475 * 10 ** 15)
