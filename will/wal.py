# will/wal.py
# Append-only JSONL write-ahead log helpers (append, iterate) and transfer-record (de)serialization

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Union

from .model import TransferRecord, TransferStatus
from .utils import iso, parse_iso

UTCNOW = lambda: datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Basic I/O
# -----------------------------------------------------------------------------

def append(path: Union[str, Path], record: Dict[str, Any]) -> Path:
    """
    Append one compact JSON record (single line) to the WAL.
    A 'ts' field is injected if missing.
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    rec = dict(record)
    rec.setdefault("ts", iso(UTCNOW()))
    line = json.dumps(rec, ensure_ascii=False, separators=(",", ":"), default=str) + "\n"
    with p.open("a", encoding="utf-8") as f:
        f.write(line)
    return p


def append_many(path: Union[str, Path], records: Iterable[Dict[str, Any]]) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("a", encoding="utf-8") as f:
        for r in records:
            rec = dict(r)
            rec.setdefault("ts", iso(UTCNOW()))
            f.write(json.dumps(rec, ensure_ascii=False, separators=(",", ":"), default=str) + "\n")
    return p


def iter_lines(path: Union[str, Path]) -> Iterator[Dict[str, Any]]:
    """
    Stream parsed JSON objects from the WAL. Skips malformed lines.
    """
    p = Path(path)
    if not p.exists():
        return
    with p.open("r", encoding="utf-8") as f:
        for line in f:
            s = line.strip()
            if not s:
                continue
            try:
                yield json.loads(s)
            except json.JSONDecodeError:
                continue


# -----------------------------------------------------------------------------
# Transfer records
# -----------------------------------------------------------------------------

def record_to_dict(r: TransferRecord) -> Dict[str, Any]:
    return {
        "tx_hash": r.tx_hash,
        "from": r.from_address,
        "to": r.to_address,
        "amount": str(r.amount),
        "timestamp": iso(r.timestamp),
        "status": r.status.value,
        "beneficiary_name": r.beneficiary_name,
        "error_detail": r.error_detail,
    }


def _to_transfer_status(x: Any) -> TransferStatus:
    if isinstance(x, TransferStatus):
        return x
    try:
        return TransferStatus[str(x).upper()]
    except KeyError:
        return TransferStatus.PENDING


def record_from_dict(d: Dict[str, Any]) -> TransferRecord:
    return TransferRecord(
        tx_hash=d.get("tx_hash") or None,
        from_address=str(d.get("from") or d.get("from_address") or ""),
        to_address=str(d.get("to") or d.get("to_address") or ""),
        amount=int(str(d.get("amount") or "0")),
        timestamp=parse_iso(d.get("timestamp")) or UTCNOW(),
        status=_to_transfer_status(d.get("status")),
        beneficiary_name=str(d.get("beneficiary_name") or ""),
        error_detail=d.get("error_detail") or None,
    )


def replay_records(wal_path: Union[str, Path]) -> List[TransferRecord]:
    """
    Rebuild transfer records from {"type":"transfer","record":{...}} lines, in
    append order. Lines of other types or that fail to parse are skipped.
    """
    out: List[TransferRecord] = []
    for rec in iter_lines(wal_path):
        if str(rec.get("type") or "").lower() != "transfer":
            continue
        try:
            out.append(record_from_dict(dict(rec.get("record") or {})))
        except (TypeError, ValueError):
            continue
    return out


__all__ = [
    "append",
    "append_many",
    "iter_lines",
    "record_to_dict",
    "record_from_dict",
    "replay_records",
]
