# will/errors.py
# Error taxonomy for the will engine plus severity registry used when errors are reported as events.

from __future__ import annotations

from enum import IntEnum
from typing import Any, Dict, Optional


class Severity(IntEnum):
    """1 = worst, 3 = least severe."""
    SEV1 = 1
    SEV2 = 2
    SEV3 = 3


# Error keys -> default severity
SEVERITY_BY_KEY: Dict[str, int] = {
    # --- Sev1: contract violations / funds at risk ---
    "precondition_violated": 1,
    "plan_overallocated": 1,

    # --- Sev2: collaborator availability ---
    "transfer_failed": 2,
    "ledger_unavailable": 2,
    "interpretation_failed": 2,
    "sentinel_unavailable": 2,

    # --- Sev3: operator input / soft errors ---
    "shares_invalid": 3,
    "balance_zero": 3,
    "address_malformed": 3,
    "wallet_missing": 3,
    "illegal_transition": 3,
    "identity_missing": 3,
}


class WillError(Exception):
    """Base class. `key` indexes SEVERITY_BY_KEY."""
    key: str = "will_error"

    def __init__(self, message: str = "", *, key: Optional[str] = None, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        if key:
            self.key = key
        self.context: Dict[str, Any] = dict(context or {})

    @property
    def severity(self) -> int:
        return SEVERITY_BY_KEY.get(self.key, int(Severity.SEV1))

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(WillError):
    """Operator-facing: bad shares, zero balance, malformed address. Blocks the transition only."""
    key = "shares_invalid"


class TransitionError(ValidationError):
    """Operation not legal in the current protocol status (e.g. heartbeat after the trip)."""
    key = "illegal_transition"


class PreconditionError(WillError):
    """Programming-contract violation, e.g. executing an invalid plan."""
    key = "precondition_violated"


class TransferError(WillError):
    """One ledger transfer failed. Isolated to its item."""
    key = "transfer_failed"


class InterpretationError(WillError):
    """Intent interpreter unreachable or returned something unusable."""
    key = "interpretation_failed"


class SentinelError(WillError):
    """Sentinel unreachable or returned a malformed report."""
    key = "sentinel_unavailable"


def severity_for_exception(exc: BaseException) -> int:
    if isinstance(exc, WillError):
        return exc.severity
    name = exc.__class__.__name__.lower()
    msg = str(exc).lower()
    if any(t in name or t in msg for t in ("timeout", "unavailable", "connection", "rate")):
        return int(Severity.SEV2)
    return int(Severity.SEV1)


__all__ = [
    "Severity", "SEVERITY_BY_KEY",
    "WillError", "ValidationError", "TransitionError", "PreconditionError", "TransferError",
    "InterpretationError", "SentinelError",
    "severity_for_exception",
]
