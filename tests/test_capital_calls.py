import pytest
from datetime import date, timedelta
from decimal import Decimal

from capital_calls import (apply_payment, check_can_send, contributions_from_payments,
                           counts_toward_called, new_capital_call)
from errors import ConflictError, ValidationError

D = Decimal


@pytest.fixture
def call():
    c = new_capital_call(1, "CC-001", 100_000, call_date=date(2024, 3, 1))
    c.id = 1
    return c


def test_new_call_defaults(call):
    assert call.status == "Draft"
    assert call.due_date == date(2024, 3, 31)
    assert call.total_paid_amount == D("0.00")
    assert call.total_unpaid_amount == D("100000.00")


def test_new_call_defaults_to_today():
    c = new_capital_call(1, "CC-002", 10)
    assert c.call_date == date.today()
    assert c.due_date == date.today() + timedelta(days=30)


@pytest.mark.parametrize("amount", [0, -5, None])
def test_new_call_requires_positive_amount(amount):
    with pytest.raises(ValidationError):
        new_capital_call(1, "CC-003", amount)


def test_due_before_call_rejected():
    with pytest.raises(ValidationError) as exc:
        new_capital_call(1, "CC-004", 10, call_date=date(2024, 3, 1), due_date=date(2024, 2, 1))
    assert "Due date must not precede call date" in exc.value.errors


def test_partial_payment_on_draft(call):
    paid, unpaid, status = apply_payment(call, 40_000)
    assert (paid, unpaid, status) == (D("40000.00"), D("60000.00"), "Partially Paid")


def test_partial_payment_on_sent(call):
    call.status = "Sent"
    assert apply_payment(call, 1)[2] == "Partially Paid"


def test_full_payment_marks_paid(call):
    call.status = "Partially Paid"
    call.total_paid_amount = D("40000.00")
    paid, unpaid, status = apply_payment(call, 60_000)
    assert (paid, unpaid, status) == (D("100000.00"), D("0.00"), "Paid")


def test_paid_plus_unpaid_equals_called(call):
    for amt in ("0.01", "33333.33", "12.34"):
        paid, unpaid, status = apply_payment(call, D(amt))
        assert paid + unpaid == call.total_call_amount
        call.total_paid_amount, call.total_unpaid_amount, call.status = paid, unpaid, status


def test_overpayment_rejected(call):
    with pytest.raises(ValidationError):
        apply_payment(call, "100000.01")


@pytest.mark.parametrize("amount", [0, -1])
def test_non_positive_payment_rejected(call, amount):
    with pytest.raises(ValidationError):
        apply_payment(call, amount)


def test_payment_on_paid_call_conflicts(call):
    call.status = "Paid"
    with pytest.raises(ConflictError):
        apply_payment(call, 1)


def test_only_draft_can_be_sent(call):
    check_can_send(call)
    call.status = "Sent"
    with pytest.raises(ConflictError):
        check_can_send(call)


def test_counts_toward_called(call):
    assert not counts_toward_called(call)
    call.status = "Sent"
    assert counts_toward_called(call)


def test_contributions_sorted_by_date():
    rows = [{"payment_date": "2024-02-01", "amount": D("10")}, {"payment_date": "2023-12-01", "amount": D("5")}]
    assert contributions_from_payments(rows) == [(date(2023, 12, 1), D("5.00")), (date(2024, 2, 1), D("10.00"))]
