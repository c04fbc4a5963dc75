# will/pipeline.py
# Execution pipeline: runs a validated DistributionPlan against a ledger, one transfer at a time, isolating failures.

from __future__ import annotations

import os
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional

from .collaborators import transfer_tx_hash
from .errors import PreconditionError, TransferError
from .events import EventKind, ProtocolEvent, error_event, make_event
from .model import DistributionItem, DistributionPlan, ExecutionOutcome, TransferRecord, TransferStatus
from .utils import format_balance

# METRICS: transfer counters/latency
try:
    from observability.metrics import transfers_total, transfer_seconds
except Exception:  # metrics optional
    transfers_total = transfer_seconds = None  # type: ignore

UTCNOW = lambda: datetime.now(timezone.utc)
EventSink = Callable[[ProtocolEvent], None]


def _dbg_enabled() -> bool:
    return os.getenv("SILEME_DEBUG", "0") not in ("0", "", "false", "False")

def _dbg(*a):
    if _dbg_enabled():
        print("[pipeline]", *a, flush=True)


def _persist(history: Any, records: List[TransferRecord]) -> None:
    if hasattr(history, "append_many"):
        history.append_many(records); return
    for r in records:
        history.append(r)


class ExecutionPipeline:
    """
    Sequential transfer runner.

    - preconditions (valid plan, no over-allocation, a ledger to sign with) are
      checked before the first transfer; violations raise PreconditionError
    - items run strictly in plan order; the next transfer starts only after the
      previous one returned or raised
    - a failed transfer becomes a FAILED record and the batch continues
    - no retries inside one run
    - the whole batch is handed to `history` after the last item, in plan order
    """

    def __init__(
        self,
        history: Any,
        *,
        source_address: str = "",
        sink: Optional[EventSink] = None,
    ) -> None:
        self.history = history
        self.source_address = source_address
        self._sink = sink

    # ----- preconditions -----

    def check(self, plan: Optional[DistributionPlan], ledger: Any) -> None:
        if plan is None:
            raise PreconditionError("no distribution plan")
        if not plan.is_valid:
            raise PreconditionError(f"distribution plan is invalid: {plan.invalid_reason or 'unknown reason'}")
        if plan.total_amount > plan.total_distributable:
            raise PreconditionError(
                f"plan allocates {plan.total_amount} but only {plan.total_distributable} is distributable",
                key="plan_overallocated",
            )
        if ledger is None or not callable(getattr(ledger, "transfer", None)):
            raise PreconditionError("no signer/session: ledger collaborator is missing")

    # ----- run -----

    def execute(self, plan: DistributionPlan, ledger: Any) -> ExecutionOutcome:
        try:
            self.check(plan, ledger)
        except PreconditionError as e:
            self._emit(error_event(e))
            _dbg("precondition failed:", e)
            raise

        self._emit(make_event(
            EventKind.CHAIN_TX,
            f"Preparing transaction batch: {len(plan.items)} transfers, {format_balance(plan.total_amount)} total",
            extra={"items": len(plan.items), "total_amount": str(plan.total_amount)},
        ))

        records: List[TransferRecord] = []
        for idx, item in enumerate(plan.items, start=1):
            records.append(self._run_item(idx, item, ledger))

        try:
            _persist(self.history, records)
        except Exception as e:
            # Transfers already happened; the outcome still carries every record.
            self._emit(error_event(e, extra={"stage": "history"}))
            _dbg("history persist failed:", e)

        outcome = ExecutionOutcome(records=tuple(records))
        self._emit(make_event(
            EventKind.DISTRIBUTION,
            f"Distribution complete: {outcome.succeeded_count} succeeded, {outcome.failed_count} failed",
            extra={"succeeded": outcome.succeeded_count, "failed": outcome.failed_count,
                   "amount_sent": str(outcome.amount_sent)},
        ))
        return outcome

    def _run_item(self, idx: int, item: DistributionItem, ledger: Any) -> TransferRecord:
        b = item.beneficiary
        _dbg("item", idx, "->", b.name, item.amount)
        t0 = time.perf_counter()
        try:
            tx_hash = transfer_tx_hash(ledger.transfer(b.payout_address, str(item.amount)))
        except Exception as e:
            err = e if isinstance(e, TransferError) else TransferError(f"{type(e).__name__}: {e}")
            rec = TransferRecord(
                from_address=self.source_address,
                to_address=b.payout_address,
                amount=item.amount,
                status=TransferStatus.FAILED,
                beneficiary_name=b.name,
                timestamp=UTCNOW(),
                error_detail=str(err),
            )
            self._observe(rec, time.perf_counter() - t0)
            self._emit(error_event(err, extra={"beneficiary": b.name, "item": idx}))
            return rec

        rec = TransferRecord(
            from_address=self.source_address,
            to_address=b.payout_address,
            amount=item.amount,
            status=TransferStatus.SUCCESS,
            beneficiary_name=b.name,
            timestamp=UTCNOW(),
            tx_hash=tx_hash,
        )
        self._observe(rec, time.perf_counter() - t0)
        self._emit(make_event(
            EventKind.DISTRIBUTION,
            f"Sent {format_balance(item.amount)} to {b.name}: {tx_hash}",
            extra={"beneficiary": b.name, "item": idx, "tx_hash": tx_hash},
        ))
        return rec

    # ----- emitters -----

    def _emit(self, ev: ProtocolEvent) -> None:
        if self._sink is not None:
            self._sink(ev)

    def _observe(self, rec: TransferRecord, seconds: float) -> None:
        if transfers_total is None:
            return
        try:
            transfers_total.labels(status=rec.status.value).inc()
            transfer_seconds.observe(max(0.0, seconds))
        except Exception:
            pass


def plan_for_failed(plan: DistributionPlan, outcome: ExecutionOutcome) -> DistributionPlan:
    """
    Sub-plan holding the items whose transfer failed in `outcome`, with their
    original amounts and in original order. Invalid when nothing failed.
    """
    failed_keys: List[tuple] = [(r.beneficiary_name, r.to_address, r.amount) for r in outcome.failed]
    items = []
    for it in plan.items:
        key = (it.beneficiary.name, it.beneficiary.payout_address, it.amount)
        if key in failed_keys:
            failed_keys.remove(key)
            items.append(it)
    if not items:
        return DistributionPlan(
            total_distributable=0, gas_reserve=0, items=(), is_valid=False,
            invalid_reason="no failed transfers to retry", balance=plan.balance,
        )
    total = sum(i.amount for i in items)
    return DistributionPlan(
        total_distributable=total,
        gas_reserve=0,
        items=tuple(items),
        is_valid=True,
        balance=plan.balance,
    )


def check_affordable(plan: DistributionPlan, balance: int) -> Optional[str]:
    """Reason string when `balance` cannot cover the plan's transfers."""
    if plan.total_amount > balance:
        return f"balance {balance} cannot cover {plan.total_amount}"
    return None


def outcome_lines(outcome: ExecutionOutcome) -> Iterable[str]:
    for r in outcome.records:
        if r.status == TransferStatus.SUCCESS:
            yield f"OK   {r.beneficiary_name}: {format_balance(r.amount)} tx={r.tx_hash}"
        else:
            yield f"FAIL {r.beneficiary_name}: {format_balance(r.amount)} ({r.error_detail})"


__all__ = ["ExecutionPipeline", "plan_for_failed", "check_affordable", "outcome_lines"]
