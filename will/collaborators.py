# will/collaborators.py
# External collaborator interfaces (ledger, intent interpreter, sentinel) with safe-default adapters and a simulated ledger.

from __future__ import annotations

import hashlib
import os
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Set, Tuple, runtime_checkable

from .errors import InterpretationError, SentinelError, TransferError
from .model import Beneficiary, SentinelReport, SentinelStatus, TransferRecord
from .utils import parse_amount, utcnow

def _dbg(*a):
    if os.getenv("SILEME_DEBUG", "0") not in ("0", "", "false", "False"):
        print("[ledger]", *a, flush=True)

# METRICS: fallback / scan counters
try:
    from observability.metrics import interpretation_fallbacks_total, sentinel_scans_total
except Exception:  # metrics optional
    interpretation_fallbacks_total = sentinel_scans_total = None  # type: ignore


# ---------- interfaces ----------

@runtime_checkable
class Ledger(Protocol):
    def get_balance(self, address: str) -> str: ...
    def transfer(self, to: str, amount: str) -> Mapping[str, Any]: ...


@runtime_checkable
class IntentInterpreter(Protocol):
    def interpret(self, text: str, locale: str) -> Sequence[Any]: ...


@runtime_checkable
class Sentinel(Protocol):
    def scan(self, handle: str, context: str, locale: str) -> Mapping[str, Any]: ...


@runtime_checkable
class TransferHistory(Protocol):
    def append(self, record: TransferRecord) -> None: ...
    def list(self) -> List[TransferRecord]: ...


# ---------- beneficiary coercion ----------

def _first(d: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return default


def to_beneficiary(x: Any) -> Beneficiary:
    """
    Accept a Beneficiary or a loosely shaped mapping from an interpreter
    ({"percentage": 70, "walletAddress": ..., "reason": ...} style keys too).
    Raises InterpretationError when the share is not a whole number.
    """
    if isinstance(x, Beneficiary):
        return x
    if not isinstance(x, Mapping):
        raise InterpretationError(f"beneficiary entry must be a mapping, got {type(x).__name__}")
    raw_share = _first(x, "percentage_share", "percentage", "share", default=0)
    if isinstance(raw_share, bool):
        raise InterpretationError(f"invalid share {raw_share!r}")
    if isinstance(raw_share, float):
        if not raw_share.is_integer():
            raise InterpretationError(f"share must be a whole percentage, got {raw_share!r}")
        raw_share = int(raw_share)
    try:
        share = int(str(raw_share).strip())
    except ValueError:
        raise InterpretationError(f"invalid share {raw_share!r}") from None
    return Beneficiary(
        name=str(_first(x, "name", default="")).strip(),
        category=str(_first(x, "category", default="")).strip(),
        percentage_share=share,
        payout_address=str(_first(x, "payout_address", "walletAddress", "wallet_address", "address", default="")).strip(),
        memo=str(_first(x, "memo", "reason", default="")).strip(),
    )


def fallback_beneficiaries(*, name: str, category: str, address: str, reason: str) -> List[Beneficiary]:
    return [Beneficiary(name=name, category=category, percentage_share=100, payout_address=address, memo=reason)]


def interpret_or_fallback(
    interpreter: Optional[IntentInterpreter],
    text: str,
    locale: str,
    *,
    fallback_name: str,
    fallback_category: str,
    fallback_address: str,
) -> Tuple[List[Beneficiary], Optional[InterpretationError]]:
    """
    Run the interpreter. On any failure (unreachable, malformed payload, empty
    list) return a single 100% fallback beneficiary plus the error describing
    why, so the caller can surface it instead of dropping data.
    """
    try:
        if interpreter is None:
            raise InterpretationError("no intent interpreter configured")
        raw = interpreter.interpret(text, locale)
        if isinstance(raw, Mapping) and "beneficiaries" in raw:
            raw = raw["beneficiaries"]
        if isinstance(raw, (str, bytes)) or not isinstance(raw, Iterable):
            raise InterpretationError(f"interpreter returned {type(raw).__name__}, expected a list")
        out = [to_beneficiary(x) for x in raw]
        if not out:
            raise InterpretationError("interpreter returned no beneficiaries")
        return out, None
    except Exception as e:
        err = e if isinstance(e, InterpretationError) else InterpretationError(f"{type(e).__name__}: {e}")
        if interpretation_fallbacks_total is not None:
            try: interpretation_fallbacks_total.inc()
            except Exception: pass
        fb = fallback_beneficiaries(
            name=fallback_name,
            category=fallback_category,
            address=fallback_address,
            reason=f"Automatic fallback: interpretation failed ({err})",
        )
        return fb, err


def scan_or_secure(
    sentinel: Optional[Sentinel],
    handle: str,
    context: str,
    locale: str,
) -> Tuple[SentinelReport, Optional[SentinelError]]:
    """Run an advisory scan; anything unusable degrades to SECURE plus the error."""
    try:
        if sentinel is None:
            raise SentinelError("no sentinel configured")
        res = sentinel.scan(handle, context, locale)
        if not isinstance(res, Mapping):
            raise SentinelError(f"sentinel returned {type(res).__name__}, expected a mapping")
        try:
            status = SentinelStatus(str(res.get("status", "")).upper())
        except ValueError:
            raise SentinelError(f"unknown sentinel status {res.get('status')!r}") from None
        evidence = res.get("evidence")
        report = SentinelReport(status=status, evidence=str(evidence) if evidence else None, timestamp=utcnow())
        err = None
    except Exception as e:
        err = e if isinstance(e, SentinelError) else SentinelError(f"{type(e).__name__}: {e}")
        report = SentinelReport(status=SentinelStatus.SECURE, evidence=None, timestamp=utcnow())
    if sentinel_scans_total is not None:
        try: sentinel_scans_total.labels(status=report.status.value).inc()
        except Exception: pass
    return report, err


# ---------- ledger result normalization ----------

def transfer_tx_hash(result: Any) -> str:
    """
    Normalize a ledger transfer result to a tx hash. Accepts {"tx_hash": ...},
    {"txHash": ...}, {"success": False, "error": ...} or a bare hash string.
    Raises TransferError for failures and unusable results.
    """
    if isinstance(result, str) and result:
        return result
    if isinstance(result, Mapping):
        if result.get("success") is False:
            raise TransferError(str(result.get("error") or "transfer failed"))
        h = result.get("tx_hash") or result.get("txHash")
        if h:
            return str(h)
    raise TransferError(f"ledger returned no transaction hash: {result!r}")


# ---------- simulated ledger ----------

class SimulatedLedger:
    """
    In-process ledger for dry runs and tests. Transfers debit `source` and
    credit the recipient; addresses in `fail_for` raise TransferError.
    """

    def __init__(self, source: str, balance: int | str = 0, *, fail_for: Optional[Iterable[str]] = None) -> None:
        self.source = source
        self._balances: Dict[str, int] = {source: parse_amount(balance)}
        self._fail_for: Set[str] = {a.lower() for a in (fail_for or [])}
        self._nonce = 0
        self._lock = threading.Lock()
        self.calls: List[Tuple[str, int]] = []

    def fund(self, address: str, amount: int | str) -> None:
        with self._lock:
            self._balances[address] = self._balances.get(address, 0) + parse_amount(amount)

    def fail_for(self, address: str) -> None:
        with self._lock:
            self._fail_for.add(address.lower())

    def allow(self, address: str) -> None:
        with self._lock:
            self._fail_for.discard(address.lower())

    def get_balance(self, address: str) -> str:
        with self._lock:
            return str(self._balances.get(address, 0))

    def transfer(self, to: str, amount: str) -> Dict[str, str]:
        amt = parse_amount(amount)
        with self._lock:
            self.calls.append((to, amt))
            if to.lower() in self._fail_for:
                raise TransferError(f"recipient {to} rejected the transfer")
            if amt <= 0:
                raise TransferError(f"non-positive amount {amt}")
            have = self._balances.get(self.source, 0)
            if amt > have:
                raise TransferError(f"insufficient funds: have {have}, need {amt}")
            self._balances[self.source] = have - amt
            self._balances[to] = self._balances.get(to, 0) + amt
            self._nonce += 1
            tx = hashlib.sha256(f"{self.source}:{to}:{amt}:{self._nonce}".encode()).hexdigest()
        _dbg("sent", amt, "to", to, "tx:", tx[:12])
        return {"tx_hash": f"0x{tx}"}


__all__ = [
    "Ledger", "IntentInterpreter", "Sentinel", "TransferHistory",
    "to_beneficiary", "fallback_beneficiaries", "interpret_or_fallback", "scan_or_secure",
    "transfer_tx_hash", "SimulatedLedger",
]
