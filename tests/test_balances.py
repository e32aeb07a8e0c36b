import pytest
from datetime import date
from decimal import Decimal

from balances import (check_financials_update, distribution_waterfall_fields,
                      exit_fields, investment_distribution_deltas)
from errors import ValidationError
from models import Distribution, Investment, Structure, TierFill, WaterfallResult

D = Decimal


def debt_investment(**kw):
    base = dict(id=1, structure_id=1, investment_name="Loan A", investment_type="DEBT",
                principal_provided=D("500000.00"), outstanding_principal=D("500000.00"))
    base.update(kw)
    return Investment(**base)


def distribution(**kw):
    base = dict(id=9, structure_id=1, distribution_number="D-9", distribution_date=date(2024, 6, 30),
                total_amount=D("250000.00"), investment_id=1)
    base.update(kw)
    return Distribution(**base)


def test_debt_repayment_deltas():
    deltas = investment_distribution_deltas(
        distribution(source_debt_principal=D("200000"), source_debt_interest=D("50000")),
        debt_investment(),
    )
    assert deltas == {
        "total_returns": D("250000.00"),
        "principal_repaid": D("200000.00"),
        "interest_received": D("50000.00"),
        "outstanding_principal": D("300000.00"),
    }


def test_outstanding_principal_floors_at_zero():
    deltas = investment_distribution_deltas(
        distribution(source_debt_principal=D("600000")), debt_investment()
    )
    assert deltas["outstanding_principal"] == D("0.00")
    assert deltas["principal_repaid"] == D("600000.00")


def test_waterfall_fields():
    result = WaterfallResult(
        total_amount=D("110.00"),
        management_fee=D("10.00"),
        fills=[TierFill(1, "Return of Capital", None, D("100.00"), D("100.00"), D("0.00"))],
    )
    fields = distribution_waterfall_fields(result)
    assert fields["tier1_amount"] == D("100.00")
    assert fields["tier4_amount"] == D("0.00")
    assert fields["lp_total_amount"] == D("100.00")
    assert fields["management_fee_amount"] == D("10.00")


def test_financials_cannot_decrease():
    s = Structure(id=1, name="F", total_called=D("1000.00"))
    assert check_financials_update(s, {"total_called": 1500, "total_invested": None}) == {"total_called": D("1500.00")}

    with pytest.raises(ValidationError) as exc:
        check_financials_update(s, {"total_called": 999, "name": "x"})
    assert len(exc.value.errors) == 2


def test_exit_realizes_gain():
    inv = Investment(id=1, structure_id=1, investment_name="Co", equity_invested=D("1000000.00"))
    fields = exit_fields(inv, exit_value=1_500_000, exit_date=date(2024, 12, 31))
    assert fields == {
        "status": "Exited",
        "exit_date": date(2024, 12, 31),
        "equity_exit_value": D("1500000.00"),
        "equity_realized_gain": D("500000.00"),
    }


def test_exit_without_value():
    inv = Investment(id=1, structure_id=1, investment_name="Co")
    fields = exit_fields(inv)
    assert fields["status"] == "Exited"
    assert "equity_realized_gain" not in fields
