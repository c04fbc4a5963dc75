# will/distribution.py
# Distribution calculator: balance + beneficiaries -> DistributionPlan, integer arithmetic only

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Union

from .model import Beneficiary, DistributionItem, DistributionPlan
from .utils import parse_amount

DEFAULT_GAS_RESERVE_PERCENT = 5


def _invalid(reason: str, *, balance: int = 0) -> DistributionPlan:
    return DistributionPlan(
        total_distributable=0,
        gas_reserve=0,
        items=(),
        is_valid=False,
        invalid_reason=reason,
        balance=balance,
    )


def calculate(
    balance: Union[str, int],
    beneficiaries: Sequence[Beneficiary],
    gas_reserve_percent: int = DEFAULT_GAS_RESERVE_PERCENT,
) -> DistributionPlan:
    """
    Split `balance` (smallest unit) across `beneficiaries` in declaration order.

      gas_reserve   = balance * gas_reserve_percent // 100
      distributable = balance - gas_reserve
      amount_i      = distributable * share_i // 100

    Division truncates; the remainder (at most len(beneficiaries) - 1 units) is
    left unclaimed. Bad input yields is_valid=False with a reason, never an
    exception. Pure: the same inputs always give an equal plan.
    """
    try:
        bal = parse_amount(balance)
    except (ValueError, TypeError) as e:
        return _invalid(f"unparseable balance: {e}")

    if bal == 0:
        return _invalid("balance is zero; fund the wallet before distributing")
    if bal < 0:
        return _invalid("balance is negative", balance=bal)

    if isinstance(gas_reserve_percent, bool) or not isinstance(gas_reserve_percent, int):
        return _invalid(f"gas reserve percent must be an integer, got {gas_reserve_percent!r}", balance=bal)
    if not 0 <= gas_reserve_percent <= 100:
        return _invalid(f"gas reserve percent out of range: {gas_reserve_percent}", balance=bal)

    gas_reserve = bal * gas_reserve_percent // 100
    distributable = bal - gas_reserve

    items = []
    for b in beneficiaries:
        share = b.percentage_share
        if isinstance(share, bool) or not isinstance(share, int) or not 0 <= share <= 100:
            return _invalid(f"invalid share {share!r} for beneficiary {b.name!r}", balance=bal)
        items.append(DistributionItem(beneficiary=b, amount=distributable * share // 100))

    return DistributionPlan(
        total_distributable=distributable,
        gas_reserve=gas_reserve,
        items=tuple(items),
        is_valid=True,
        balance=bal,
    )


def shares_total(beneficiaries: Iterable[Beneficiary]) -> int:
    return sum(int(b.percentage_share) for b in beneficiaries)


def validate_shares(beneficiaries: Sequence[Beneficiary]) -> Optional[str]:
    """Return a reason string when the list cannot be sealed as a will, else None."""
    if not beneficiaries:
        return "no beneficiaries configured"
    for b in beneficiaries:
        share = b.percentage_share
        if isinstance(share, bool) or not isinstance(share, int) or not 0 <= share <= 100:
            return f"share for {b.name!r} must be an integer in 0..100, got {share!r}"
    total = shares_total(beneficiaries)
    if total != 100:
        return f"beneficiary shares sum to {total}, expected 100"
    return None


__all__ = ["DEFAULT_GAS_RESERVE_PERCENT", "calculate", "shares_total", "validate_shares"]
