# tests/will_test/history_test.py
# Pytest for transfer history stores: bounded view, eviction order, file persistence & WAL replay

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from will import wal as WAL
from will.history import FileTransferHistory, InMemoryTransferHistory
from will.model import TransferRecord, TransferStatus

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _rec(i: int, status: TransferStatus = TransferStatus.SUCCESS) -> TransferRecord:
    return TransferRecord(
        from_address="0x" + "00" * 20,
        to_address="0x" + "01" * 20,
        amount=1000 + i,
        status=status,
        beneficiary_name=f"b{i}",
        timestamp=T0 + timedelta(seconds=i),
        tx_hash=f"0x{i:064x}" if status == TransferStatus.SUCCESS else None,
        error_detail=None if status == TransferStatus.SUCCESS else "boom",
    )


def test_in_memory_keeps_most_recent_fifty_oldest_first():
    h = InMemoryTransferHistory()
    for i in range(60):
        h.append(_rec(i))
    names = [r.beneficiary_name for r in h.list()]
    assert len(names) == 50
    assert names[0] == "b10" and names[-1] == "b59"


def test_append_many_preserves_batch_order():
    h = InMemoryTransferHistory(limit=5)
    h.append_many([_rec(i) for i in range(3)])
    h.append_many([_rec(i) for i in range(3, 7)])
    assert [r.amount for r in h.list()] == [1002, 1003, 1004, 1005, 1006]


@pytest.fixture()
def store(tmp_path: Path) -> FileTransferHistory:
    return FileTransferHistory(tmp_path / "history", limit=3)


def test_paths_and_files_exist(store: FileTransferHistory):
    p = store.paths()
    assert set(p.keys()) == {"dir", "state", "wal"}
    assert Path(p["wal"]).exists()
    assert Path(p["dir"]).is_dir()


def test_file_store_round_trips_records(store: FileTransferHistory, tmp_path: Path):
    store.append_many([_rec(1), _rec(2, TransferStatus.FAILED)])
    again = FileTransferHistory(tmp_path / "history", limit=3)
    recs = again.list()
    assert [r.beneficiary_name for r in recs] == ["b1", "b2"]
    assert recs[1].status == TransferStatus.FAILED and recs[1].error_detail == "boom"
    assert recs[0].amount == 1001 and isinstance(recs[0].amount, int)
    assert recs[0].timestamp == T0 + timedelta(seconds=1)


def test_wal_keeps_everything_state_keeps_bounded_view(store: FileTransferHistory):
    for i in range(5):
        store.append(_rec(i))
    wal_lines = [json.loads(s) for s in Path(store.paths()["wal"]).read_text(encoding="utf-8").splitlines()]
    state_lines = Path(store.paths()["state"]).read_text(encoding="utf-8").splitlines()
    assert len(wal_lines) == 5
    assert all(d["type"] == "transfer" for d in wal_lines)
    assert len(state_lines) == 3
    # amounts are written as decimal strings
    assert wal_lines[0]["record"]["amount"] == "1000"


def test_missing_state_is_rebuilt_from_wal(store: FileTransferHistory, tmp_path: Path):
    for i in range(4):
        store.append(_rec(i))
    Path(store.paths()["state"]).unlink()
    again = FileTransferHistory(tmp_path / "history", limit=3)
    assert [r.beneficiary_name for r in again.list()] == ["b1", "b2", "b3"]


def test_replay_skips_garbage_lines(tmp_path: Path):
    wal_path = tmp_path / "wal.log"
    WAL.append(wal_path, {"type": "transfer", "record": WAL.record_to_dict(_rec(7))})
    with wal_path.open("a", encoding="utf-8") as f:
        f.write("{not json\n")
    WAL.append(wal_path, {"type": "other"})
    recs = WAL.replay_records(wal_path)
    assert [r.beneficiary_name for r in recs] == ["b7"]
