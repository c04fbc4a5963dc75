# tests/will_test/pipeline_test.py
# Pytest for the execution pipeline: preconditions, sequential order, partial-failure isolation, persistence

from __future__ import annotations

import threading
from typing import List

import pytest

from will.collaborators import SimulatedLedger
from will.distribution import calculate
from will.errors import PreconditionError
from will.events import EventKind
from will.history import InMemoryTransferHistory
from will.model import Beneficiary, DistributionItem, DistributionPlan, ExecutionOutcome, TransferStatus
from will.pipeline import ExecutionPipeline, check_affordable, outcome_lines, plan_for_failed

SOURCE = "0x" + "00" * 20


def _b(name: str, share: int, byte: str) -> Beneficiary:
    return Beneficiary(name=name, category="Family", percentage_share=share, payout_address="0x" + byte * 20)


BENS = [_b("one", 50, "01"), _b("two", 30, "02"), _b("three", 20, "03")]


class RecordingLedger:
    """Fails the configured recipients; asserts no two transfers overlap."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.calls: List[str] = []
        self._busy = threading.Lock()

    def get_balance(self, address):
        return str(10 ** 18)

    def transfer(self, to, amount):
        assert self._busy.acquire(blocking=False), "transfers must not overlap"
        try:
            self.calls.append(to)
            if to in self.fail_for:
                raise RuntimeError("nonce too low")
            return {"txHash": f"0xhash{len(self.calls)}"}
        finally:
            self._busy.release()


@pytest.fixture()
def history():
    return InMemoryTransferHistory()


def test_middle_failure_is_isolated_and_order_kept(history):
    plan = calculate(10 ** 18, BENS)
    ledger = RecordingLedger(fail_for={BENS[1].payout_address})
    events = []
    pipe = ExecutionPipeline(history, source_address=SOURCE, sink=events.append)

    out = pipe.execute(plan, ledger)

    assert out.succeeded_count == 2 and out.failed_count == 1
    assert [r.status for r in out.records] == [TransferStatus.SUCCESS, TransferStatus.FAILED, TransferStatus.SUCCESS]
    assert ledger.calls == [b.payout_address for b in BENS]

    persisted = history.list()
    assert [r.beneficiary_name for r in persisted] == ["one", "two", "three"]
    assert [r.status for r in persisted] == [TransferStatus.SUCCESS, TransferStatus.FAILED, TransferStatus.SUCCESS]
    assert persisted[1].tx_hash is None
    assert "nonce too low" in persisted[1].error_detail
    assert persisted[0].tx_hash == "0xhash1"
    assert all(r.from_address == SOURCE for r in persisted)

    kinds = [e.kind for e in events]
    assert kinds[0] == EventKind.CHAIN_TX
    assert EventKind.ALERT in kinds
    assert events[-1].kind == EventKind.DISTRIBUTION


def test_counts_always_add_up(history):
    plan = calculate(10 ** 18, BENS)
    out = ExecutionPipeline(history).execute(plan, RecordingLedger(fail_for={b.payout_address for b in BENS}))
    assert out.succeeded_count + out.failed_count == len(plan.items)
    assert out.amount_sent == 0


def test_invalid_plan_raises_before_any_transfer(history):
    ledger = RecordingLedger()
    with pytest.raises(PreconditionError):
        ExecutionPipeline(history).execute(calculate("0", BENS), ledger)
    assert ledger.calls == []
    assert history.list() == []


def test_missing_ledger_raises(history):
    with pytest.raises(PreconditionError):
        ExecutionPipeline(history).execute(calculate(10 ** 18, BENS), None)


def test_overallocated_plan_raises(history):
    item = DistributionItem(beneficiary=BENS[0], amount=200)
    plan = DistributionPlan(total_distributable=100, gas_reserve=0, items=(item,), is_valid=True, balance=100)
    with pytest.raises(PreconditionError) as ei:
        ExecutionPipeline(history).execute(plan, RecordingLedger())
    assert ei.value.key == "plan_overallocated"


def test_simulated_ledger_moves_funds(history):
    ledger = SimulatedLedger(SOURCE, 10 ** 18)
    plan = calculate(ledger.get_balance(SOURCE), BENS)
    out = ExecutionPipeline(history, source_address=SOURCE).execute(plan, ledger)
    assert out.failed_count == 0
    assert int(ledger.get_balance(SOURCE)) == 10 ** 18 - plan.total_amount
    assert int(ledger.get_balance(BENS[0].payout_address)) == plan.items[0].amount
    assert all(r.tx_hash.startswith("0x") for r in out.records)


def test_history_write_failure_still_returns_outcome():
    class BrokenHistory:
        def append(self, record):
            raise OSError("disk full")

        def list(self):
            return []

    events = []
    out = ExecutionPipeline(BrokenHistory(), sink=events.append).execute(calculate(10 ** 18, BENS), RecordingLedger())
    assert out.succeeded_count == 3
    assert any(e.kind == EventKind.ALERT and "disk full" in e.message for e in events)


def test_plan_for_failed_keeps_original_amounts(history):
    plan = calculate(10 ** 18, BENS)
    out = ExecutionPipeline(history).execute(plan, RecordingLedger(fail_for={BENS[2].payout_address}))
    sub = plan_for_failed(plan, out)
    assert sub.is_valid
    assert [i.beneficiary.name for i in sub.items] == ["three"]
    assert sub.items[0].amount == plan.items[2].amount
    assert check_affordable(sub, sub.total_amount) is None
    assert check_affordable(sub, sub.total_amount - 1) is not None


def test_plan_for_failed_without_failures_is_invalid():
    plan = calculate(10 ** 18, BENS)
    assert plan_for_failed(plan, ExecutionOutcome(records=())).is_valid is False


def test_outcome_lines_mark_failures(history):
    plan = calculate(10 ** 18, BENS)
    out = ExecutionPipeline(history).execute(plan, RecordingLedger(fail_for={BENS[0].payout_address}))
    lines = list(outcome_lines(out))
    assert lines[0].startswith("FAIL one")
    assert lines[1].startswith("OK   two")


def test_ledger_reporting_success_false_counts_as_failure(history):
    class SoftFailLedger(RecordingLedger):
        def transfer(self, to, amount):
            return {"success": False, "error": "reverted"}

    out = ExecutionPipeline(history).execute(calculate(10 ** 18, BENS[:1] + [_b("x", 50, "09")]), SoftFailLedger())
    assert out.failed_count == 2
    assert out.records[0].error_detail == "reverted"


def test_transfer_error_detail_is_preserved(history):
    ledger = SimulatedLedger(SOURCE, 10 ** 18, fail_for=[BENS[0].payout_address])
    out = ExecutionPipeline(history).execute(calculate(10 ** 18, BENS), ledger)
    assert "rejected" in out.records[0].error_detail
    assert out.records[1].status == TransferStatus.SUCCESS
