# will/model.py
# Core dataclasses and enums for the will lifecycle (Beneficiary, DistributionPlan, PendingWill, TransferRecord, statuses)

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

UTCNOW = lambda: datetime.now(timezone.utc)


class ProtocolStatus(str, Enum):
    IDLE = "IDLE"
    ONBOARDING = "ONBOARDING"
    MONITORING = "MONITORING"
    ACTIVATED = "ACTIVATED"
    EXECUTED = "EXECUTED"


class WillStatus(str, Enum):
    PENDING = "PENDING"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TransferStatus(str, Enum):
    SUCCESS = "SUCCESS"
    PENDING = "PENDING"
    FAILED = "FAILED"


class SentinelStatus(str, Enum):
    SECURE = "SECURE"
    THREAT_DETECTED = "THREAT_DETECTED"


@dataclass(frozen=True)
class Beneficiary:
    name: str
    category: str
    percentage_share: int
    payout_address: str
    memo: str = ""


@dataclass(frozen=True)
class DistributionItem:
    beneficiary: Beneficiary
    amount: int


@dataclass(frozen=True)
class DistributionPlan:
    """
    Per-beneficiary transfer amounts derived from one balance reading.

    All amounts are integers in the smallest unit (wei-style). `items` keeps the
    beneficiary declaration order, which is also the execution order.
    """
    total_distributable: int
    gas_reserve: int
    items: Tuple[DistributionItem, ...] = ()
    is_valid: bool = True
    invalid_reason: Optional[str] = None
    balance: int = 0

    @property
    def total_amount(self) -> int:
        return sum(i.amount for i in self.items)

    @property
    def rounding_loss(self) -> int:
        # Truncation remainder that stays unclaimed
        return self.total_distributable - self.total_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balance": str(self.balance),
            "gas_reserve": str(self.gas_reserve),
            "total_distributable": str(self.total_distributable),
            "total_amount": str(self.total_amount),
            "is_valid": self.is_valid,
            "invalid_reason": self.invalid_reason,
            "items": [
                {
                    "name": i.beneficiary.name,
                    "payout_address": i.beneficiary.payout_address,
                    "percentage_share": i.beneficiary.percentage_share,
                    "amount": str(i.amount),
                }
                for i in self.items
            ],
        }


@dataclass
class PendingWill:
    id: str
    beneficiaries: Tuple[Beneficiary, ...]
    manifesto_snapshot: str
    balance_snapshot_at_seal: int
    sealed_at: datetime
    duration_ms: int
    status: WillStatus = WillStatus.PENDING
    updated_at: datetime = field(default_factory=UTCNOW)

    def touch(self) -> None:
        self.updated_at = UTCNOW()

    def is_terminal(self) -> bool:
        return self.status in {WillStatus.COMPLETED, WillStatus.CANCELLED}


@dataclass(frozen=True)
class TransferRecord:
    from_address: str
    to_address: str
    amount: int
    status: TransferStatus
    beneficiary_name: str
    timestamp: datetime = field(default_factory=UTCNOW)
    tx_hash: Optional[str] = None
    error_detail: Optional[str] = None

    def explorer_url(self, base_url: str) -> Optional[str]:
        if not self.tx_hash:
            return None
        return f"{base_url.rstrip('/')}/tx/{self.tx_hash}"


@dataclass(frozen=True)
class ExecutionOutcome:
    records: Tuple[TransferRecord, ...] = ()

    @property
    def succeeded_count(self) -> int:
        return sum(1 for r in self.records if r.status == TransferStatus.SUCCESS)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.records if r.status == TransferStatus.FAILED)

    @property
    def succeeded(self) -> List[TransferRecord]:
        return [r for r in self.records if r.status == TransferStatus.SUCCESS]

    @property
    def failed(self) -> List[TransferRecord]:
        return [r for r in self.records if r.status == TransferStatus.FAILED]

    @property
    def amount_sent(self) -> int:
        return sum(r.amount for r in self.succeeded)


@dataclass(frozen=True)
class SentinelReport:
    status: SentinelStatus = SentinelStatus.SECURE
    evidence: Optional[str] = None
    timestamp: datetime = field(default_factory=UTCNOW)

    @property
    def threat(self) -> bool:
        return self.status == SentinelStatus.THREAT_DETECTED


__all__ = [
    "ProtocolStatus", "WillStatus", "TransferStatus", "SentinelStatus",
    "Beneficiary", "DistributionItem", "DistributionPlan", "PendingWill",
    "TransferRecord", "ExecutionOutcome", "SentinelReport",
]
