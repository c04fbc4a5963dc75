# will/config.py
# Central configuration for the will engine: distribution, timers, fallbacks, persistence paths, metrics.

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import os
import time

# ---------- Paths ----------
ROOT_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = ROOT_DIR / "data"
HISTORY_DIR = DATA_DIR / "history"
EVENTS_PATH = DATA_DIR / "events" / "events.jsonl"

# ---------- Helpers ----------
def _to_bool(v: Optional[str], default: bool) -> bool:
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y", "t"}

def _to_int(v: Optional[str], default: int) -> int:
    try:
        return int(v) if v is not None else default
    except ValueError:
        return default

def _to_float(v: Optional[str], default: float) -> float:
    try:
        return float(v) if v is not None else default
    except ValueError:
        return default

# ---------- Config Dataclass ----------
@dataclass
class WillConfig:
    # Distribution
    GAS_RESERVE_PERCENT: int = 5          # held back from every plan for transaction costs

    # Proof of life
    THRESHOLD_DAYS: float = 180.0         # inactivity threshold (strictly greater trips)
    COUNTDOWN_MS: int = 30_000            # sealed-will waiting period
    WATCH_INTERVAL_S: float = 1.0         # watcher poll cadence
    SENTINEL_INTERVAL_S: float = 30.0     # advisory social scan cadence (0 disables)

    # Interpretation fallback (used when the interpreter fails)
    FALLBACK_NAME: str = "Unallocated Funds"
    FALLBACK_CATEGORY: str = "Unallocated"
    FALLBACK_ADDRESS: str = ""            # empty: will cannot be sealed until an address is set
    LOCALE: str = "en"

    # Validation
    STRICT_ADDRESSES: bool = True         # require 0x + 40 hex payout addresses at seal time

    # History / activity log
    HISTORY_LIMIT: int = 50
    EVENT_LOG_LIMIT: int = 500
    EXPLORER_URL: str = "https://testnet.kitescan.ai"

    # Metrics
    METRICS_ENABLED: bool = True
    METRICS_PORT: int = 9100
    HEALTH_PORT: int = 9101               # JSON health feed for dashboards (0 disables)

    # Paths
    ROOT_DIR: Path = ROOT_DIR
    DATA_DIR: Path = DATA_DIR
    HISTORY_DIR: Path = HISTORY_DIR
    EVENTS_PATH: Path = EVENTS_PATH

    # Runtime
    START_TS: float = field(default_factory=time.time)

    @property
    def threshold_ms(self) -> float:
        return self.THRESHOLD_DAYS * 86_400_000.0

# ---------- Build config with env overrides ----------
def build_from_env() -> WillConfig:
    cfg = WillConfig()
    cfg.GAS_RESERVE_PERCENT = _to_int(os.getenv("SILEME_GAS_RESERVE_PERCENT"), cfg.GAS_RESERVE_PERCENT)

    cfg.THRESHOLD_DAYS = _to_float(os.getenv("SILEME_THRESHOLD_DAYS"), cfg.THRESHOLD_DAYS)
    cfg.COUNTDOWN_MS = _to_int(os.getenv("SILEME_COUNTDOWN_MS"), cfg.COUNTDOWN_MS)
    cfg.WATCH_INTERVAL_S = _to_float(os.getenv("SILEME_WATCH_INTERVAL_S"), cfg.WATCH_INTERVAL_S)
    cfg.SENTINEL_INTERVAL_S = _to_float(os.getenv("SILEME_SENTINEL_INTERVAL_S"), cfg.SENTINEL_INTERVAL_S)

    cfg.FALLBACK_NAME = os.getenv("SILEME_FALLBACK_NAME", cfg.FALLBACK_NAME)
    cfg.FALLBACK_CATEGORY = os.getenv("SILEME_FALLBACK_CATEGORY", cfg.FALLBACK_CATEGORY)
    cfg.FALLBACK_ADDRESS = os.getenv("SILEME_FALLBACK_ADDRESS", cfg.FALLBACK_ADDRESS)
    cfg.LOCALE = os.getenv("SILEME_LOCALE", cfg.LOCALE)

    cfg.STRICT_ADDRESSES = _to_bool(os.getenv("SILEME_STRICT_ADDRESSES"), cfg.STRICT_ADDRESSES)

    cfg.HISTORY_LIMIT = _to_int(os.getenv("SILEME_HISTORY_LIMIT"), cfg.HISTORY_LIMIT)
    cfg.EVENT_LOG_LIMIT = _to_int(os.getenv("SILEME_EVENT_LOG_LIMIT"), cfg.EVENT_LOG_LIMIT)
    cfg.EXPLORER_URL = os.getenv("SILEME_EXPLORER_URL", cfg.EXPLORER_URL)

    cfg.METRICS_ENABLED = _to_bool(os.getenv("SILEME_METRICS"), cfg.METRICS_ENABLED)
    cfg.METRICS_PORT = _to_int(os.getenv("SILEME_METRICS_PORT"), cfg.METRICS_PORT)
    cfg.HEALTH_PORT = _to_int(os.getenv("SILEME_HEALTH_PORT"), cfg.HEALTH_PORT)

    data_dir = os.getenv("SILEME_DATA_DIR")
    if data_dir:
        cfg.DATA_DIR = Path(data_dir)
        cfg.HISTORY_DIR = cfg.DATA_DIR / "history"
        cfg.EVENTS_PATH = cfg.DATA_DIR / "events" / "events.jsonl"
    return cfg

WILLCFG = build_from_env()

# ---------- Quick usage notes ----------
# from will.config import WILLCFG
# calculate(balance, beneficiaries, WILLCFG.GAS_RESERVE_PERCENT)
# FileTransferHistory(WILLCFG.HISTORY_DIR, limit=WILLCFG.HISTORY_LIMIT)
