# will/events.py
# Typed protocol events (closed kind enum) and adapters to subscriber sinks and the events WAL

from __future__ import annotations

from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .errors import WillError, severity_for_exception

UTCNOW = lambda: datetime.now(timezone.utc)
EVENT_VERSION = 1


# ----------- Event kinds -----------

class EventKind(str, Enum):
    HEARTBEAT = "HEARTBEAT"            # proof of life, identity, system notices
    WALLET_LINK = "WALLET_LINK"        # wallet bound to the protocol
    INTERPRETATION = "INTERPRETATION"  # testament -> beneficiaries
    SENTINEL = "SENTINEL"              # watcher / sentinel status reports
    ALERT = "ALERT"                    # rejected actions, trips, failures
    CHAIN_TX = "CHAIN_TX"              # sealing, countdown, transaction batch progress
    DISTRIBUTION = "DISTRIBUTION"      # plan ready, per-transfer results, completion


# Every kind must appear in each table below.
LEVEL_BY_KIND: Dict[EventKind, str] = {
    EventKind.HEARTBEAT: "info",
    EventKind.WALLET_LINK: "info",
    EventKind.INTERPRETATION: "info",
    EventKind.SENTINEL: "info",
    EventKind.ALERT: "warning",
    EventKind.CHAIN_TX: "info",
    EventKind.DISTRIBUTION: "info",
}

LABEL_BY_KIND: Dict[EventKind, str] = {
    EventKind.HEARTBEAT: "heartbeat",
    EventKind.WALLET_LINK: "wallet",
    EventKind.INTERPRETATION: "intent",
    EventKind.SENTINEL: "sentinel",
    EventKind.ALERT: "alert",
    EventKind.CHAIN_TX: "chain",
    EventKind.DISTRIBUTION: "distribution",
}


# ----------- Event -----------

@dataclass
class ProtocolEvent:
    kind: EventKind
    message: str
    ts: str = field(default_factory=lambda: UTCNOW().isoformat())
    src: str = "will"
    level: str = "info"
    status: str = ""
    v: int = EVENT_VERSION
    extra: Dict[str, Any] = field(default_factory=dict)


def make_event(
    kind: EventKind,
    message: str,
    *,
    status: Any = "",
    level: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> ProtocolEvent:
    kind = EventKind(kind)
    return ProtocolEvent(
        kind=kind,
        message=message,
        level=level or LEVEL_BY_KIND[kind],
        status=getattr(status, "value", str(status or "")),
        extra=dict(extra or {}),
    )


def error_event(exc: BaseException, *, status: Any = "", extra: Optional[Dict[str, Any]] = None) -> ProtocolEvent:
    """ALERT event for an error; severity 1 escalates the level to 'error'."""
    sev = severity_for_exception(exc)
    data = {"error": type(exc).__name__, "severity": sev}
    if isinstance(exc, WillError):
        data["key"] = exc.key
    data.update(extra or {})
    return make_event(
        EventKind.ALERT,
        str(exc) or type(exc).__name__,
        status=status,
        level="error" if sev == 1 else "warning",
        extra=data,
    )


# ----------- Adapters -----------

def to_sink_event(ev: ProtocolEvent) -> Dict[str, Any]:
    """Flatten to a dict suitable for subscriber sinks and dashboards."""
    d = asdict(ev)
    d["kind"] = ev.kind.value
    d["label"] = LABEL_BY_KIND[ev.kind]
    d["source"] = d.pop("src")
    return d


def event_to_dict(ev: ProtocolEvent) -> Dict[str, Any]:
    d = asdict(ev)
    d["kind"] = ev.kind.value
    return d


__all__ = [
    "EventKind",
    "LEVEL_BY_KIND",
    "LABEL_BY_KIND",
    "ProtocolEvent",
    "make_event",
    "error_event",
    "to_sink_event",
    "event_to_dict",
]
