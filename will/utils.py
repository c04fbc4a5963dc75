# will/utils.py
# Common helpers: time/ids, atomic JSON/JSONL writes, smallest-unit amount parsing and formatting

from __future__ import annotations

import contextlib
import json
import os
import re
import tempfile
import uuid
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

WEI_DECIMALS = 18
_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

# ---------- time ----------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()

def parse_iso(s: Optional[str]) -> Optional[datetime]:
    if not s:
        return None
    ss = str(s).strip()
    if ss.endswith("Z"):
        ss = ss[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(ss)
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    except ValueError:
        return None

# ---------- ids ----------

def mk_id(prefix: str = "w_") -> str:
    return f"{prefix}{uuid.uuid4().hex[:10]}"

# ---------- amounts / addresses ----------

def parse_amount(value: Union[str, int]) -> int:
    """
    Parse an integer smallest-unit amount. Accepts ints and decimal digit strings
    (surrounding whitespace allowed). Floats and bools are refused: fractional
    native-token amounts must never pass through binary floating point.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"amount must be an integer or digit string, got {type(value).__name__}")
    if isinstance(value, int):
        return value
    s = str(value).strip()
    if not re.fullmatch(r"[+-]?\d+", s):
        raise ValueError(f"not an integer amount: {value!r}")
    return int(s)

def format_balance(wei: Union[str, int], decimals: int = 4) -> str:
    """Render a smallest-unit amount as a fixed-point string with `decimals` places (truncated)."""
    try:
        n = parse_amount(wei)
    except ValueError:
        return "0." + "0" * max(0, decimals)
    sign = "-" if n < 0 else ""
    whole, frac = divmod(abs(n), 10 ** WEI_DECIMALS)
    frac_s = str(frac).rjust(WEI_DECIMALS, "0")[: max(0, decimals)]
    return f"{sign}{whole}.{frac_s}" if decimals > 0 else f"{sign}{whole}"

def is_valid_address(address: Optional[str]) -> bool:
    return bool(address) and bool(_ADDRESS_RE.match(str(address)))

def shorten_address(address: str, chars: int = 4) -> str:
    if not address:
        return ""
    return f"{address[: chars + 2]}...{address[-chars:]}"

# ---------- paths ----------

def ensure_dir(p: Union[str, Path]) -> Path:
    path = Path(p)
    path.mkdir(parents=True, exist_ok=True)
    return path

# ---------- I/O: JSON / JSONL / text (atomic) ----------

def jsonable(obj: Any) -> Any:
    if is_dataclass(obj) and not isinstance(obj, type):
        obj = asdict(obj)
    if isinstance(obj, dict):
        return {k: jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [jsonable(v) for v in obj]
    if isinstance(obj, datetime):
        return iso(obj)
    if isinstance(obj, Enum):
        return obj.value
    return obj

def write_text(path: Union[str, Path], text: str, *, atomic: bool = True) -> Path:
    p = Path(path)
    ensure_dir(p.parent)
    if not atomic:
        p.write_text(text, encoding="utf-8")
        return p
    fd, tmpname = tempfile.mkstemp(prefix="._tmp_", dir=str(p.parent))
    os.close(fd)
    tmp = Path(tmpname)
    try:
        tmp.write_text(text, encoding="utf-8")
        tmp.replace(p)
    finally:
        with contextlib.suppress(OSError):
            if tmp.exists():
                tmp.unlink()
    return p

def write_jsonl(path: Union[str, Path], records: Iterable[Dict[str, Any]], *, atomic: bool = True) -> Path:
    lines = [json.dumps(jsonable(r), ensure_ascii=False, separators=(",", ":")) for r in records]
    return write_text(path, "".join(s + "\n" for s in lines), atomic=atomic)

__all__ = [
    "utcnow", "iso", "parse_iso", "mk_id",
    "parse_amount", "format_balance", "is_valid_address", "shorten_address",
    "ensure_dir", "jsonable", "write_text", "write_jsonl",
]
