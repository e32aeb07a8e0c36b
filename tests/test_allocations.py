import pytest
from datetime import date
from decimal import Decimal

from allocations import (allocations_as_dict, build_capital_call_allocations,
                         build_distribution_allocations, split_pool)
from capital_calls import new_capital_call
from errors import LedgerConsistencyError, ValidationError
from models import Distribution, OwnershipShare

D = Decimal


def shares(*pairs):
    return [OwnershipShare(inv, D(str(pct))) for inv, pct in pairs]


def test_sixty_forty_split():
    lines = split_pool(100_000, shares(("A", 60), ("B", 40)))
    assert [(s.investor_id, amt) for s, amt in lines] == [("A", D("60000.00")), ("B", D("40000.00"))]


def test_thirds_residual_goes_to_lowest_id_on_tie():
    third = D(100) / 3
    lines = split_pool(D("100.00"), [OwnershipShare("C", third), OwnershipShare("A", third), OwnershipShare("B", third)])
    amounts = {s.investor_id: amt for s, amt in lines}
    assert amounts == {"A": D("33.34"), "B": D("33.33"), "C": D("33.33")}
    assert sum(amounts.values()) == D("100.00")


def test_residual_goes_to_largest_holder():
    lines = split_pool(D("0.05"), shares(("A", 10), ("B", 70), ("C", 20)))
    amounts = {s.investor_id: amt for s, amt in lines}
    assert sum(amounts.values()) == D("0.05")
    assert amounts["B"] == D("0.03")


@pytest.mark.parametrize("pool", ["0.01", "1.00", "999999.99", "12345.67"])
def test_split_sums_to_pool(pool):
    lines = split_pool(D(pool), shares(("A", "12.5"), ("B", "37.5"), ("C", "16.67"), ("D", "33.33")))
    assert sum(amt for _, amt in lines) == D(pool)
    assert all(amt >= 0 for _, amt in lines)


def test_zero_pool_gives_zero_lines():
    lines = split_pool(0, shares(("A", 50), ("B", 50)))
    assert [amt for _, amt in lines] == [D("0.00"), D("0.00")]


def test_no_investors_gives_no_lines():
    assert split_pool(1_000, []) == []


def test_negative_pool_rejected():
    with pytest.raises(ValidationError):
        split_pool(-1, shares(("A", 100)))


def test_ownership_not_summing_to_hundred_is_fatal():
    with pytest.raises(LedgerConsistencyError):
        split_pool(1_000, shares(("A", 60), ("B", 30)))


def test_capital_call_allocations_inherit_due_date():
    call = new_capital_call(1, "CC-1", 250_000, call_date=date(2024, 1, 1))
    call.id = 7
    allocs = build_capital_call_allocations(call, shares(("A", 60), ("B", 40)))

    assert [a.allocated_amount for a in allocs] == [D("150000.00"), D("100000.00")]
    assert all(a.due_date == date(2024, 1, 31) for a in allocs)
    assert all(a.capital_call_id == 7 and a.status == "Pending" for a in allocs)
    assert all(a.paid_amount == D("0.00") and a.remaining_amount == a.allocated_amount for a in allocs)


def test_distribution_allocations_split_lp_pool():
    dist = Distribution(id=3, structure_id=1, distribution_number="D-1",
                        distribution_date=date(2024, 1, 1), total_amount=D("1200000.00"),
                        lp_total_amount=D("1160000.00"), gp_total_amount=D("40000.00"))
    allocs = build_distribution_allocations(dist, shares(("A", 60), ("B", 40)))

    assert [a.allocated_amount for a in allocs] == [D("696000.00"), D("464000.00")]
    assert allocs[0].payment_date == date(2024, 1, 1)

    out = allocations_as_dict(allocs)
    assert out["allocations"][0] == {
        "investorId": "A",
        "allocatedAmount": 696000.0,
        "paidAmount": 0.0,
        "remainingAmount": 696000.0,
        "status": "Pending",
    }
