# will/health.py
# Lightweight health snapshot of the will engine for dashboards and the dry-run entry point

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Any, Dict, Optional

from .events import to_sink_event
from .utils import iso, utcnow


def _name(x: Any) -> Optional[str]:
    if x is None:
        return None
    return getattr(x, "value", str(x))


def snapshot(
    machine: Any,
    *,
    now: Optional[datetime] = None,
    max_list: int = 10,
) -> Dict[str, Any]:
    """
    Build a JSON-serializable snapshot: protocol status, proof-of-life reading,
    pending will and countdown, current plan, last execution and recent events.

    Parameters
    ----------
    machine : WillStateMachine
    now : datetime, optional
        Override the current time (UTC).
    max_list : int
        Maximum number of items in list-y sections (history, events).
    """
    now = now or utcnow()
    st = machine.snapshot()

    will = st.pending_will
    will_info = None
    if will is not None:
        will_info = {
            "id": will.id,
            "status": _name(will.status),
            "beneficiaries": len(will.beneficiaries),
            "balance_snapshot_at_seal": str(will.balance_snapshot_at_seal),
            "sealed_at": iso(will.sealed_at),
            "duration_ms": will.duration_ms,
            "countdown_remaining_ms": machine.countdown_remaining_ms(),
            "countdown_progress": round(machine.countdown_progress(), 4),
        }

    last = st.last_outcome
    last_info = None
    if last is not None:
        last_info = {
            "succeeded": last.succeeded_count,
            "failed": last.failed_count,
            "amount_sent": str(last.amount_sent),
            "failed_beneficiaries": [r.beneficiary_name for r in last.failed],
        }

    history = list(machine.history.list()) if hasattr(machine.history, "list") else []
    by_status = Counter(_name(r.status) for r in history)

    report = st.sentinel
    return {
        "now": iso(now),
        "status": _name(st.status),
        "identity": st.identity,
        "wallets": list(st.wallets),
        "trip_reason": st.trip_reason,
        "activated_at": iso(st.activated_at),
        "in_flight": st.in_flight,
        "activity": {
            "last_active": iso(st.monitor.last_active),
            "days_silent": round(st.monitor.days_silent(now), 4),
            "threshold_days": st.monitor.threshold_days,
        },
        "pending_will": will_info,
        "plan": st.current_plan.to_dict() if st.current_plan is not None else None,
        "last_execution": last_info,
        "sentinel": None if report is None else {
            "status": _name(report.status),
            "evidence": report.evidence,
            "at": iso(report.timestamp),
        },
        "history": {
            "size": len(history),
            "by_status": dict(by_status),
            "recent": [
                {"beneficiary": r.beneficiary_name, "amount": str(r.amount), "status": _name(r.status),
                 "tx_hash": r.tx_hash, "at": iso(r.timestamp)}
                for r in history[-max_list:]
            ],
        },
        "events": [to_sink_event(e) for e in machine.events(max_list)],
    }


__all__ = ["snapshot"]
