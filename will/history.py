# will/history.py
# Transfer history stores: bounded most-recent-N view plus an append-only audit WAL on disk.

from __future__ import annotations

import threading
from collections import deque
from pathlib import Path
from typing import Deque, Dict, Iterable, List

from .model import TransferRecord
from . import wal as WAL
from .utils import ensure_dir, write_jsonl

DEFAULT_LIMIT = 50


class InMemoryTransferHistory:
    """Most recent `limit` records, oldest evicted first. Thread-safe."""

    def __init__(self, *, limit: int = DEFAULT_LIMIT) -> None:
        self.limit = max(1, int(limit))
        self._records: Deque[TransferRecord] = deque(maxlen=self.limit)
        self._lock = threading.RLock()

    def append(self, record: TransferRecord) -> None:
        with self._lock:
            self._records.append(record)

    def append_many(self, records: Iterable[TransferRecord]) -> None:
        with self._lock:
            for r in records:
                self._records.append(r)

    def list(self) -> List[TransferRecord]:
        """Chronological (append) order, oldest first."""
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class FileTransferHistory(InMemoryTransferHistory):
    """
    File-backed history.

    Directory layout:
      data_dir/
        history.jsonl   # bounded view: the most recent `limit` records, rewritten atomically
        wal.log         # append-only audit log of every record ever appended (never truncated)

    On init we load history.jsonl; if it is empty or missing we rebuild the
    bounded view by replaying wal.log.
    """

    def __init__(self, data_dir: Path | str, *, limit: int = DEFAULT_LIMIT) -> None:
        super().__init__(limit=limit)
        self._dir = ensure_dir(Path(data_dir))
        self._state = self._dir / "history.jsonl"
        self._wal = self._dir / "wal.log"
        self._wal.touch(exist_ok=True)
        self._load()

    # ---------------- paths / counts ----------------

    def paths(self) -> Dict[str, str]:
        return {"dir": str(self._dir), "state": str(self._state), "wal": str(self._wal)}

    # ---------------- loading ----------------

    def _load(self) -> None:
        loaded = []
        for rec in WAL.iter_lines(self._state):
            try:
                loaded.append(WAL.record_from_dict(rec))
            except (TypeError, ValueError):
                continue
        if not loaded:
            loaded = WAL.replay_records(self._wal)
        for r in loaded:
            self._records.append(r)

    # ---------------- writes ----------------

    def append(self, record: TransferRecord) -> None:
        self.append_many([record])

    def append_many(self, records: Iterable[TransferRecord]) -> None:
        batch = list(records)
        if not batch:
            return
        with self._lock:
            WAL.append_many(self._wal, [{"type": "transfer", "record": WAL.record_to_dict(r)} for r in batch])
            for r in batch:
                self._records.append(r)
            write_jsonl(self._state, [WAL.record_to_dict(r) for r in self._records])


__all__ = ["DEFAULT_LIMIT", "InMemoryTransferHistory", "FileTransferHistory"]
