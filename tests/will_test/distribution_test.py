# tests/will_test/distribution_test.py
# Pytest for the distribution calculator: integer splits, soft failures, purity, rounding bound

from __future__ import annotations

import json
import random

import pytest

from will.distribution import calculate, shares_total, validate_shares
from will.model import Beneficiary


def _b(name: str, share: int, addr_byte: str = "11") -> Beneficiary:
    return Beneficiary(name=name, category="Family", percentage_share=share, payout_address="0x" + addr_byte * 20)


def test_worked_example_one_unit_70_30():
    bens = [_b("Alice", 70, "aa"), _b("Bob", 30, "bb")]
    plan = calculate("1000000000000000000", bens, 5)

    assert plan.is_valid
    assert plan.gas_reserve == 50_000_000_000_000_000
    assert plan.total_distributable == 950_000_000_000_000_000
    assert [i.amount for i in plan.items] == [665_000_000_000_000_000, 285_000_000_000_000_000]
    assert plan.total_amount == 950_000_000_000_000_000
    assert plan.rounding_loss == 0


def test_items_keep_declaration_order():
    bens = [_b("C", 10), _b("A", 60), _b("B", 30)]
    plan = calculate(10 ** 18, bens)
    assert [i.beneficiary.name for i in plan.items] == ["C", "A", "B"]


def test_zero_balance_is_soft_failure():
    plan = calculate("0", [_b("A", 100)])
    assert plan.is_valid is False
    assert "zero" in plan.invalid_reason
    assert plan.items == ()


@pytest.mark.parametrize("bal", ["abc", "1.5", "", "  ", "1e18", 1.5, True])
def test_unparseable_balance_never_raises(bal):
    plan = calculate(bal, [_b("A", 100)])
    assert plan.is_valid is False
    assert plan.invalid_reason


def test_negative_balance_and_bad_reserve_are_soft_failures():
    assert calculate(-5, [_b("A", 100)]).is_valid is False
    assert calculate(100, [_b("A", 100)], 101).is_valid is False
    assert calculate(100, [_b("A", 100)], -1).is_valid is False


def test_balance_string_tolerates_whitespace():
    plan = calculate(" 1000 ", [_b("A", 100)], 0)
    assert plan.is_valid and plan.items[0].amount == 1000


def test_truncation_leaves_remainder_unclaimed():
    bens = [_b("A", 33), _b("B", 33), _b("C", 34)]
    plan = calculate(101, bens, 0)
    # 101*33//100 = 33, 101*34//100 = 34
    assert [i.amount for i in plan.items] == [33, 33, 34]
    assert plan.total_amount == 100
    assert plan.rounding_loss == 1


def test_random_lists_stay_within_balance_and_rounding_bound():
    rnd = random.Random(1234)
    for _ in range(300):
        n = rnd.randint(1, 7)
        cuts = sorted(rnd.sample(range(1, 100), n - 1)) if n > 1 else []
        shares = [b - a for a, b in zip([0] + cuts, cuts + [100])]
        bens = [_b(f"b{i}", s) for i, s in enumerate(shares)]
        bal = rnd.randint(0, 10 ** 24)
        plan = calculate(str(bal), bens, rnd.randint(0, 20))
        if bal == 0:
            assert not plan.is_valid
            continue
        assert plan.is_valid
        assert plan.total_amount <= bal
        assert plan.total_amount <= plan.total_distributable
        assert bal - plan.gas_reserve - plan.total_amount < len(bens)


def test_calculate_is_pure_and_idempotent():
    bens = [_b("A", 70), _b("B", 30)]
    a = calculate("123456789012345678901", bens, 5)
    b = calculate("123456789012345678901", bens, 5)
    assert a == b
    assert json.dumps(a.to_dict(), sort_keys=True) == json.dumps(b.to_dict(), sort_keys=True)


def test_validate_shares_messages():
    assert validate_shares([]) == "no beneficiaries configured"
    assert "sum to 90" in validate_shares([_b("A", 60), _b("B", 30)])
    assert validate_shares([_b("A", 100)]) is None
    assert validate_shares([_b("A", 101)]) is not None
    assert shares_total([_b("A", 60), _b("B", 40)]) == 100
