# will/machine.py
# Will state machine: owns ProtocolStatus + PendingWill, funnels every mutation through one re-entrant lock,
# and routes both triggers (inactivity threshold, countdown expiry) through the same single-fire activation path.

from __future__ import annotations

import copy
import os
import sys
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple, Union

from vigil.activity import ActivityMonitor
from vigil.countdown import CountdownHandle, CountdownTimer

from . import wal as WAL
from .collaborators import interpret_or_fallback, scan_or_secure, to_beneficiary
from .config import WILLCFG, WillConfig
from .distribution import calculate, validate_shares
from .errors import (
    InterpretationError, TransitionError, ValidationError, WillError,
)
from .events import (
    EventKind, ProtocolEvent, error_event, event_to_dict, make_event, to_sink_event,
)
from .history import InMemoryTransferHistory
from .model import (
    Beneficiary, DistributionPlan, ExecutionOutcome, PendingWill, ProtocolStatus,
    SentinelReport, WillStatus,
)
from .pipeline import ExecutionPipeline, check_affordable, plan_for_failed
from .utils import format_balance, is_valid_address, mk_id, parse_amount, shorten_address, utcnow

# METRICS: heartbeat/trip/transition counters, status gauge
try:
    from observability.metrics import (
        heartbeats_total, switch_trips_total, transitions_rejected_total, plans_total, set_protocol_status,
    )
except Exception:
    heartbeats_total = switch_trips_total = transitions_rejected_total = plans_total = None  # type: ignore
    set_protocol_status = None  # type: ignore

Sink = Callable[[Dict[str, Any]], None]


def _dbg_enabled() -> bool:
    return os.getenv("SILEME_DEBUG", "0") not in ("0", "", "false", "False")

def _dbg(*a):
    if _dbg_enabled():
        print("[machine]", *a, flush=True)


# ---------------- state / results ----------------

@dataclass
class ProtocolState:
    """Everything the machine owns. Only mutated under WillStateMachine._lock."""
    status: ProtocolStatus = ProtocolStatus.IDLE
    identity: Optional[str] = None
    wallets: List[str] = field(default_factory=list)
    beneficiaries: List[Beneficiary] = field(default_factory=list)   # live, editable
    manifesto: str = ""
    monitor: ActivityMonitor = field(default_factory=ActivityMonitor)
    pending_will: Optional[PendingWill] = None
    sealed_beneficiaries: Tuple[Beneficiary, ...] = ()               # snapshot used for every plan
    current_plan: Optional[DistributionPlan] = None
    last_plan: Optional[DistributionPlan] = None                     # plan behind last_outcome
    last_outcome: Optional[ExecutionOutcome] = None
    sentinel: Optional[SentinelReport] = None
    trip_reason: Optional[str] = None
    activated_at: Optional[datetime] = None
    in_flight: bool = False

    @property
    def source_address(self) -> str:
        return self.wallets[0] if self.wallets else ""


@dataclass(frozen=True)
class Outcome:
    """Result of an operator action. Rejections carry the reason instead of raising."""
    accepted: bool
    status: ProtocolStatus
    reason: Optional[str] = None
    error: Optional[WillError] = None
    data: Any = None


# ---------------- machine ----------------

class WillStateMachine:
    """
    idle -> onboarding -> monitoring -> activated -> executed

    Collaborators are duck-typed (see will.collaborators):
      - ledger: get_balance(address) / transfer(to, amount)
      - interpreter: interpret(text, locale)
      - sentinel: scan(handle, context, locale)
      - history: append(record) / list()
      - sink (optional): callable(event_dict), e.g. a dashboard feed

    Ledger transfers run with the lock released; `in_flight` keeps other
    actions from interleaving with a running batch.
    """

    def __init__(
        self,
        *,
        ledger: Any = None,
        interpreter: Any = None,
        sentinel: Any = None,
        history: Any = None,
        timer: Optional[CountdownTimer] = None,
        config: Optional[WillConfig] = None,
        sink: Optional[Sink] = None,
        events_path: Optional[Union[str, Path]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.cfg = config or WILLCFG
        self.ledger = ledger
        self.interpreter = interpreter
        self.sentinel = sentinel
        self.history = history if history is not None else InMemoryTransferHistory(limit=self.cfg.HISTORY_LIMIT)
        self.timer = timer or CountdownTimer()
        self.sink = sink
        self.events_path = Path(events_path) if events_path else None
        self._clock = clock or utcnow

        self._lock = threading.RLock()
        self._ev_lock = threading.Lock()
        self._events: Deque[ProtocolEvent] = deque(maxlen=max(1, int(self.cfg.EVENT_LOG_LIMIT)))
        self._state = ProtocolState(monitor=ActivityMonitor(threshold_days=self.cfg.THRESHOLD_DAYS))
        self._handle: Optional[CountdownHandle] = None
        self._forced: Optional[Tuple[str, Optional[datetime]]] = None
        self._publish_status()

    # ---------------- reads ----------------

    @property
    def status(self) -> ProtocolStatus:
        with self._lock:
            return self._state.status

    @property
    def countdown(self) -> Optional[CountdownHandle]:
        with self._lock:
            return self._handle

    def snapshot(self) -> ProtocolState:
        """Deep copy of the owned state; editing it has no effect on the machine."""
        with self._lock:
            return copy.deepcopy(self._state)

    def events(self, n: Optional[int] = None) -> List[ProtocolEvent]:
        with self._ev_lock:
            out = list(self._events)
        return out[-n:] if n else out

    def countdown_remaining_ms(self) -> float:
        with self._lock:
            h = self._handle
        return self.timer.remaining(h) if h is not None else 0.0

    def countdown_progress(self) -> float:
        with self._lock:
            h = self._handle
        return self.timer.progress_fraction(h) if h is not None else 0.0

    # ---------------- onboarding ----------------

    def establish_identity(self, handle: str) -> Outcome:
        with self._lock:
            st = self._state
            if st.status not in (ProtocolStatus.IDLE, ProtocolStatus.ONBOARDING):
                return self._reject("establish_identity", f"identity cannot change while {st.status.value}")
            h = (handle or "").strip().lstrip("@")
            if not h:
                return self._reject("establish_identity", ValidationError("identity handle is empty", key="identity_missing"))
            st.identity = h
            if st.status == ProtocolStatus.IDLE:
                self._set_status(ProtocolStatus.ONBOARDING)
            self._emit(make_event(EventKind.HEARTBEAT, f"Identity established: @{h}", status=st.status))
            return self._ok()

    def link_wallet(self, address: str) -> Outcome:
        with self._lock:
            st = self._state
            if st.status == ProtocolStatus.IDLE:
                return self._reject("link_wallet", "establish an identity before linking a wallet")
            addr = (address or "").strip()
            if not addr or (self.cfg.STRICT_ADDRESSES and not is_valid_address(addr)):
                return self._reject("link_wallet", ValidationError(f"malformed wallet address {addr!r}", key="address_malformed"))
            if addr not in st.wallets:
                st.wallets.append(addr)
                self._emit(make_event(EventKind.WALLET_LINK, f"Wallet linked: {shorten_address(addr)}",
                                      status=st.status, extra={"address": addr}))
            return self._ok(data=list(st.wallets))

    def set_beneficiaries(self, beneficiaries: Sequence[Any], *, manifesto: Optional[str] = None) -> Outcome:
        """Replace the live beneficiary list. A sealed will keeps its own snapshot."""
        try:
            coerced = [to_beneficiary(b) for b in beneficiaries]
        except InterpretationError as e:
            with self._lock:
                return self._reject("set_beneficiaries", ValidationError(str(e)))
        with self._lock:
            st = self._state
            if st.status in (ProtocolStatus.IDLE, ProtocolStatus.ACTIVATED):
                return self._reject("set_beneficiaries", f"beneficiaries cannot be edited while {st.status.value}")
            st.beneficiaries = coerced
            if manifesto is not None:
                st.manifesto = manifesto
            return self._ok(data=list(coerced))

    def interpret_will(self, text: str, *, locale: Optional[str] = None) -> Outcome:
        """
        Turn a free-text testament into beneficiaries. Interpreter failures fall
        back to one 100% "Unallocated Funds" entry; the failure is reported on
        the outcome and as an ALERT event, never dropped.
        """
        with self._lock:
            if not self._can_draft(self._state):
                return self._reject("interpret_will", f"cannot interpret a will while {self._draft_blocker(self._state)}")

        beneficiaries, err = interpret_or_fallback(
            self.interpreter, text, locale or self.cfg.LOCALE,
            fallback_name=self.cfg.FALLBACK_NAME,
            fallback_category=self.cfg.FALLBACK_CATEGORY,
            fallback_address=self.cfg.FALLBACK_ADDRESS,
        )

        with self._lock:
            st = self._state
            if not self._can_draft(st):
                return self._reject("interpret_will", f"status changed to {self._draft_blocker(st)} during interpretation")
            st.beneficiaries = list(beneficiaries)
            st.manifesto = text
            if err is not None:
                self._emit(error_event(err, status=st.status))
                self._emit(make_event(EventKind.INTERPRETATION,
                                      f"Interpretation failed; using fallback beneficiary {self.cfg.FALLBACK_NAME!r}",
                                      status=st.status, extra={"fallback": True}))
            else:
                names = ", ".join(f"{b.name} {b.percentage_share}%" for b in beneficiaries)
                self._emit(make_event(EventKind.INTERPRETATION, f"Beneficiaries identified: {names}",
                                      status=st.status, extra={"count": len(beneficiaries)}))
            return Outcome(accepted=True, status=st.status, error=err, data=list(beneficiaries))

    # ---------------- sealing ----------------

    def seal(self, *, duration_ms: Optional[int] = None, now: Optional[datetime] = None) -> Outcome:
        """
        Commit the live beneficiaries as a PendingWill, snapshot the balance,
        start the countdown and enter monitoring. Guards: shares sum to 100,
        payout addresses well formed, the primary (first linked) wallet is funded.
        """
        with self._lock:
            st = self._state
            if not self._can_draft(st):
                return self._reject("seal", f"a will cannot be sealed while {self._draft_blocker(st)}")
            if st.in_flight:
                return self._reject("seal", "a distribution is still running")

            reason = validate_shares(st.beneficiaries)
            if reason:
                return self._reject("seal", ValidationError(reason, key="shares_invalid"))
            if self.cfg.STRICT_ADDRESSES:
                bad = [b.name for b in st.beneficiaries if not is_valid_address(b.payout_address)]
                if bad:
                    return self._reject("seal", ValidationError(
                        f"malformed payout address for {', '.join(bad)}", key="address_malformed"))
            if not st.wallets:
                return self._reject("seal", ValidationError("no wallet linked", key="wallet_missing"))

            # the ledger signs from the primary (first linked) wallet only
            balance, err = self._read_balance()
            if err is not None:
                return self._reject("seal", err)
            if balance <= 0:
                others = len(st.wallets) - 1
                extra = f"; {others} other linked wallet(s) are not used as a source" if others else ""
                return self._reject("seal", ValidationError(
                    f"primary wallet {shorten_address(st.source_address)} is not funded{extra}",
                    key="balance_zero"))

            now = now or self._clock()
            duration = int(self.cfg.COUNTDOWN_MS if duration_ms is None else duration_ms)
            snapshot = tuple(st.beneficiaries)
            will = PendingWill(
                id=mk_id(),
                beneficiaries=snapshot,
                manifesto_snapshot=st.manifesto,
                balance_snapshot_at_seal=balance,
                sealed_at=now,
                duration_ms=duration,
            )
            self._disarm()
            st.pending_will = will
            st.sealed_beneficiaries = snapshot
            st.current_plan = None
            st.last_plan = None
            st.last_outcome = None
            st.trip_reason = None
            st.activated_at = None
            st.monitor.record_heartbeat(now)
            self._set_status(ProtocolStatus.MONITORING)
            self._handle = self.timer.start(duration, self._on_countdown_expired)
            self._emit(make_event(
                EventKind.CHAIN_TX,
                f"Will sealed: {len(snapshot)} beneficiaries, balance {format_balance(balance)}; "
                f"countdown {duration / 1000:.0f}s started",
                status=st.status,
                extra={"will_id": will.id, "balance": str(balance), "duration_ms": duration},
            ))
            _dbg("sealed", will.id, "duration_ms", duration)
            return self._ok(data=will)

    # ---------------- proof of life ----------------

    def heartbeat(self, now: Optional[datetime] = None) -> Outcome:
        with self._lock:
            st = self._state
            if st.status != ProtocolStatus.MONITORING:
                self._count_heartbeat("rejected")
                if st.status in (ProtocolStatus.ACTIVATED, ProtocolStatus.EXECUTED):
                    msg = f"heartbeat ignored: switch already tripped ({st.status.value})"
                else:
                    msg = f"heartbeat ignored: not monitoring ({st.status.value})"
                return self._reject("heartbeat", msg)
            ts = st.monitor.record_heartbeat(now or self._clock())
            self._count_heartbeat("accepted")
            self._emit(make_event(EventKind.HEARTBEAT, "Proof of life received", status=st.status,
                                  extra={"last_active": ts.isoformat()}))
            return self._ok()

    def check_inactivity(self, now: Optional[datetime] = None, *, manual: bool = False) -> Outcome:
        """
        Compare days silent with the threshold and trip the switch when it is
        strictly exceeded. Repeated checks after the trip change nothing.
        `manual` marks an operator "ping" and always reports the reading.
        """
        with self._lock:
            st = self._state
            if st.status != ProtocolStatus.MONITORING:
                return Outcome(accepted=False, status=st.status, reason=f"not monitoring ({st.status.value})")
            reading = st.monitor.reading(now or self._clock())
            if not reading.expired:
                if manual:
                    self._emit(make_event(
                        EventKind.SENTINEL,
                        f"Owner active: {reading.days_silent:.1f} days silent, threshold {reading.threshold_days:g}",
                        status=st.status,
                        extra={"days_silent": reading.days_silent, "threshold_days": reading.threshold_days},
                    ))
                return Outcome(accepted=True, status=st.status, data=reading)
            self._trip("inactivity", now)
            return Outcome(accepted=True, status=self._state.status, data=reading)

    def trigger_now(self) -> Outcome:
        """Operator-forced trip (same path as natural expiry)."""
        with self._lock:
            if self._state.status != ProtocolStatus.MONITORING:
                return self._reject("trigger_now", f"not monitoring ({self._state.status.value})")
            self._trip("forced")
            return self._ok()

    # ---------------- trigger path ----------------

    def _trip(self, reason: str, now: Optional[datetime] = None) -> None:
        # Caller holds the lock and has checked status == MONITORING.
        h = self._handle
        if h is not None and not h.inert:
            self._forced = (reason, now)
            try:
                fired = self.timer.force_expire_now(h)
            finally:
                self._forced = None
            if fired:
                return
        if self._state.status == ProtocolStatus.MONITORING:
            self._activate(reason, now)

    def _on_countdown_expired(self, handle: CountdownHandle) -> None:
        with self._lock:
            if handle is not self._handle:
                _dbg("stale countdown handle", handle.id)
                return
            if self._state.status != ProtocolStatus.MONITORING:
                _dbg("countdown fired while", self._state.status.value, "- ignored")
                return
            if handle.fired_how == "natural" or self._forced is None:
                reason, now = ("countdown" if handle.fired_how == "natural" else "forced"), None
            else:
                reason, now = self._forced
            self._activate(reason, now)

    def _activate(self, reason: str, now: Optional[datetime] = None) -> None:
        st = self._state
        now = now or self._clock()
        will = st.pending_will
        if will is not None and will.status == WillStatus.PENDING:
            will.status = WillStatus.EXECUTING
            will.touch()
        st.trip_reason = reason
        st.activated_at = now
        self._set_status(ProtocolStatus.ACTIVATED)
        if switch_trips_total is not None:
            try: switch_trips_total.labels(reason=reason).inc()
            except Exception: pass
        days = st.monitor.days_silent(now)
        print(f"[SWITCH] tripped reason={reason} days_silent={days:.2f}", file=sys.stderr)
        self._emit(make_event(
            EventKind.ALERT,
            f"Dead man's switch triggered ({reason}); preparing distribution",
            status=st.status,
            level="error",
            extra={"reason": reason, "days_silent": days},
        ))
        self._present(self._compute_plan())

    # ---------------- plan review ----------------

    def refresh_plan(self) -> Outcome:
        """Recompute from the live balance and the sealed beneficiaries."""
        with self._lock:
            st = self._state
            if st.status != ProtocolStatus.ACTIVATED:
                return self._reject("refresh_plan", f"no trip to plan for ({st.status.value})")
            if st.in_flight:
                return self._reject("refresh_plan", "a distribution is already running")
            plan = self._compute_plan()
            self._present(plan)
            if not plan.is_valid:
                return Outcome(accepted=False, status=st.status, reason=plan.invalid_reason,
                               error=self._plan_error(plan), data=plan)
            return self._ok(data=plan)

    present_plan = refresh_plan

    def _compute_plan(self) -> DistributionPlan:
        st = self._state
        balance, err = self._read_balance()
        if err is not None:
            plan = DistributionPlan(total_distributable=0, gas_reserve=0, items=(), is_valid=False,
                                    invalid_reason=str(err))
        else:
            plan = calculate(balance, st.sealed_beneficiaries, self.cfg.GAS_RESERVE_PERCENT)
        if plans_total is not None:
            try: plans_total.labels(valid=str(plan.is_valid).lower()).inc()
            except Exception: pass
        return plan

    def _present(self, plan: DistributionPlan) -> None:
        st = self._state
        st.current_plan = plan
        if plan.is_valid:
            self._emit(make_event(
                EventKind.DISTRIBUTION,
                f"Distribution plan ready: {len(plan.items)} transfers, "
                f"{format_balance(plan.total_amount)} of {format_balance(plan.balance)} "
                f"(gas reserve {format_balance(plan.gas_reserve)})",
                status=st.status,
                extra=plan.to_dict(),
            ))
        else:
            self._emit(error_event(self._plan_error(plan), status=st.status))

    @staticmethod
    def _plan_error(plan: DistributionPlan) -> ValidationError:
        key = "balance_zero" if plan.balance <= 0 else "shares_invalid"
        return ValidationError(plan.invalid_reason or "invalid distribution plan", key=key)

    def reject_plan(self, now: Optional[datetime] = None) -> Outcome:
        """
        Operator cancels the presented plan: the trip is reverted and
        monitoring resumes. The rejection counts as proof of life.
        """
        with self._lock:
            st = self._state
            if st.status != ProtocolStatus.ACTIVATED:
                return self._reject("reject_plan", f"no presented plan to cancel ({st.status.value})")
            if st.in_flight:
                return self._reject("reject_plan", "distribution already running")
            st.current_plan = None
            st.trip_reason = None
            st.activated_at = None
            st.monitor.record_heartbeat(now or self._clock())
            self._set_status(ProtocolStatus.MONITORING)
            self._emit(make_event(EventKind.ALERT, "Distribution cancelled by operator; monitoring resumed",
                                  status=st.status))
            return self._ok()

    # ---------------- execution ----------------

    def confirm_execution(self) -> Outcome:
        """
        Run the presented plan through the pipeline. Partial failures still end
        in EXECUTED; the failed subset is on the returned ExecutionOutcome.
        """
        with self._lock:
            st = self._state
            if st.status != ProtocolStatus.ACTIVATED:
                return self._reject("confirm_execution", f"nothing to execute ({st.status.value})")
            if st.in_flight:
                return self._reject("confirm_execution", "distribution already running")
            plan = st.current_plan
            if plan is None:
                return self._reject("confirm_execution", "no distribution plan presented")
            if not plan.is_valid:
                return self._reject("confirm_execution", self._plan_error(plan))
            st.in_flight = True
            pipeline = self._pipeline()

        try:
            outcome = pipeline.execute(plan, self.ledger)
        finally:
            with self._lock:
                self._state.in_flight = False

        with self._lock:
            st = self._state
            st.last_plan = plan
            st.last_outcome = outcome
            will = st.pending_will
            if will is not None and will.status == WillStatus.EXECUTING:
                will.status = WillStatus.COMPLETED
                will.touch()
            self._disarm()
            self._set_status(ProtocolStatus.EXECUTED)
            if outcome.failed_count:
                self._emit(make_event(
                    EventKind.ALERT,
                    f"Distribution finished with failures: {outcome.failed_count} of {len(outcome.records)} "
                    f"transfers failed ({', '.join(r.beneficiary_name for r in outcome.failed)})",
                    status=st.status,
                    extra={"failed": [r.beneficiary_name for r in outcome.failed]},
                ))
            return self._ok(data=outcome)

    def retry_failed(self) -> Outcome:
        """
        New pipeline run over the transfers that failed last time, at their
        original amounts. Earlier records are never modified.
        """
        with self._lock:
            st = self._state
            if st.status != ProtocolStatus.EXECUTED:
                return self._reject("retry_failed", f"nothing to retry ({st.status.value})")
            if st.in_flight:
                return self._reject("retry_failed", "distribution already running")
            if st.last_plan is None or st.last_outcome is None or not st.last_outcome.failed_count:
                return self._reject("retry_failed", "no failed transfers to retry")
            sub = plan_for_failed(st.last_plan, st.last_outcome)
            balance, err = self._read_balance()
            if err is not None:
                return self._reject("retry_failed", err)
            short = check_affordable(sub, balance)
            if short:
                return self._reject("retry_failed", ValidationError(short, key="balance_zero"))
            st.in_flight = True
            pipeline = self._pipeline()

        try:
            outcome = pipeline.execute(sub, self.ledger)
        finally:
            with self._lock:
                self._state.in_flight = False

        with self._lock:
            st = self._state
            st.last_plan = sub
            st.last_outcome = outcome
            return self._ok(data=outcome)

    def _pipeline(self) -> ExecutionPipeline:
        return ExecutionPipeline(self.history, source_address=self._state.source_address, sink=self._emit)

    # ---------------- cancellation / acknowledgement ----------------

    def cancel_will(self) -> Outcome:
        """
        Cancel a pending will before its countdown fires. Loses to a countdown
        that already fired; a will that is executing runs to completion.
        """
        with self._lock:
            st = self._state
            will = st.pending_will
            if will is None:
                return self._reject("cancel_will", "no pending will")
            if will.status != WillStatus.PENDING:
                return self._reject("cancel_will", f"will is {will.status.value.lower()}; nothing to cancel")
            h = self._handle
            if h is not None and not self.timer.cancel(h):
                return self._reject("cancel_will", "countdown already fired")
            will.status = WillStatus.CANCELLED
            will.touch()
            st.pending_will = None
            self._handle = None
            self._emit(make_event(EventKind.CHAIN_TX, "Pending will cancelled; countdown stopped",
                                  status=st.status, extra={"will_id": will.id}))
            return self._ok(data=will)

    def acknowledge(self) -> Outcome:
        """Clear a completed will after the operator has seen the result."""
        with self._lock:
            st = self._state
            if st.status != ProtocolStatus.EXECUTED:
                return self._reject("acknowledge", f"nothing to acknowledge ({st.status.value})")
            if st.in_flight:
                return self._reject("acknowledge", "distribution already running")
            st.pending_will = None
            return self._ok()

    # ---------------- sentinel (advisory) ----------------

    def scan_sentinel(self, context: str = "", *, locale: Optional[str] = None) -> Outcome:
        """Advisory scan; a threat is reported but never changes the protocol status."""
        with self._lock:
            handle = self._state.identity
            if not handle:
                return self._reject("scan_sentinel", ValidationError("no identity to scan", key="identity_missing"))

        report, err = scan_or_secure(self.sentinel, handle, context, locale or self.cfg.LOCALE)

        with self._lock:
            st = self._state
            st.sentinel = report
            if err is not None:
                self._emit(error_event(err, status=st.status))
            if report.threat:
                self._emit(make_event(EventKind.SENTINEL, f"Threat detected for @{handle}: {report.evidence or 'no evidence'}",
                                      status=st.status, level="warning", extra={"evidence": report.evidence}))
            else:
                self._emit(make_event(EventKind.SENTINEL, f"Sentinel: @{handle} secure", status=st.status))
            return Outcome(accepted=True, status=st.status, error=err, data=report)

    # ---------------- internals ----------------

    def _read_balance(self) -> Tuple[int, Optional[WillError]]:
        if self.ledger is None:
            return 0, ValidationError("no ledger configured", key="wallet_missing")
        src = self._state.source_address
        if not src:
            return 0, ValidationError("no wallet linked", key="wallet_missing")
        try:
            return parse_amount(self.ledger.get_balance(src)), None
        except Exception as e:
            return 0, WillError(f"could not read balance: {type(e).__name__}: {e}", key="ledger_unavailable")

    @staticmethod
    def _can_draft(st: ProtocolState) -> bool:
        # monitoring with no queued will (cancelled) is open for a new draft
        if st.status in (ProtocolStatus.ONBOARDING, ProtocolStatus.EXECUTED):
            return True
        return st.status == ProtocolStatus.MONITORING and st.pending_will is None

    @staticmethod
    def _draft_blocker(st: ProtocolState) -> str:
        if st.status == ProtocolStatus.MONITORING and st.pending_will is not None:
            return f"will {st.pending_will.id} is {st.pending_will.status.value.lower()}"
        return st.status.value

    def _disarm(self) -> None:
        h = self._handle
        if h is not None:
            self.timer.cancel(h)
        self._handle = None

    def _set_status(self, status: ProtocolStatus) -> None:
        prev = self._state.status
        self._state.status = status
        if prev != status:
            _dbg(prev.value, "->", status.value)
        self._publish_status()

    def _publish_status(self) -> None:
        if set_protocol_status is not None:
            try: set_protocol_status(self._state.status.value, list(ProtocolStatus))
            except Exception: pass

    def _count_heartbeat(self, result: str) -> None:
        if heartbeats_total is not None:
            try: heartbeats_total.labels(result=result).inc()
            except Exception: pass

    def _ok(self, *, data: Any = None) -> Outcome:
        return Outcome(accepted=True, status=self._state.status, data=data)

    def _reject(self, action: str, why: Union[str, WillError]) -> Outcome:
        err = why if isinstance(why, WillError) else TransitionError(why)
        if transitions_rejected_total is not None:
            try: transitions_rejected_total.labels(action=action).inc()
            except Exception: pass
        self._emit(error_event(err, status=self._state.status, extra={"action": action}))
        return Outcome(accepted=False, status=self._state.status, reason=str(err), error=err)

    def _emit(self, ev: ProtocolEvent) -> None:
        with self._ev_lock:
            self._events.append(ev)
            if self.events_path is not None:
                try:
                    WAL.append(self.events_path, event_to_dict(ev))
                except OSError as e:
                    _dbg("event WAL write failed:", e)
        if callable(self.sink):
            try:
                self.sink(to_sink_event(ev))
            except Exception:
                pass


__all__ = ["ProtocolState", "Outcome", "WillStateMachine"]
