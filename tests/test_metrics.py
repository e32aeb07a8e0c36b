import pytest
from datetime import date
from decimal import Decimal

from metrics import calculate_moic, hurdle_future_value, investment_metrics, xirr, xnpv
from models import Investment

D = Decimal


def test_xirr_one_year():
    cfs = [(date(2023, 1, 1), -100.0), (date(2024, 1, 1), 110.0)]
    assert xirr(cfs) == pytest.approx(0.10, abs=1e-9)


def test_xirr_needs_both_signs():
    assert xirr([(date(2023, 1, 1), 100.0), (date(2024, 1, 1), 110.0)]) is None
    assert xirr([(date(2023, 1, 1), -100.0)]) is None


def test_xnpv_zero_at_irr():
    cfs = [(date(2020, 1, 1), -1000.0), (date(2021, 6, 1), 300.0), (date(2023, 3, 1), 1000.0)]
    r = xirr(cfs)
    assert xnpv(r, cfs) == pytest.approx(0.0, abs=1e-6)


def test_hurdle_future_value_one_year():
    fv = hurdle_future_value([(date(2023, 1, 1), D("1000000"))], [], date(2024, 1, 1), 0.08)
    assert fv == D("1080000.00")


def test_hurdle_future_value_closes_xnpv():
    contributions = [(date(2022, 2, 1), D("600000")), (date(2022, 9, 15), D("400000"))]
    receipts = [(date(2023, 5, 1), D("250000"))]
    as_of = date(2024, 4, 30)
    x = hurdle_future_value(contributions, receipts, as_of, 0.08)

    cfs = [(d, -float(a)) for d, a in contributions] + [(d, float(a)) for d, a in receipts] + [(as_of, float(x))]
    assert xirr(cfs) == pytest.approx(0.08, abs=1e-9)


def test_hurdle_never_negative():
    fv = hurdle_future_value([(date(2023, 1, 1), D("100"))], [(date(2023, 6, 1), D("500"))], date(2024, 1, 1), 0.08)
    assert fv == 0


def test_moic():
    assert calculate_moic([(date(2023, 1, 1), -100.0)], [(date(2024, 1, 1), 150.0)], 50.0) == pytest.approx(2.0)
    assert calculate_moic([], [(date(2024, 1, 1), 150.0)]) == 0.0


def test_investment_metrics_exited():
    inv = Investment(id=1, structure_id=1, investment_name="Co", investment_date=date(2023, 1, 1),
                     status="Exited", exit_date=date(2024, 1, 1),
                     equity_invested=D("1000000"), equity_exit_value=D("1100000"))
    m = investment_metrics(inv, [], date(2024, 6, 30))
    assert m["irrPercent"] == pytest.approx(10.0, abs=1e-6)
    assert m["moic"] == pytest.approx(1.1)


def test_investment_metrics_without_outlay():
    inv = Investment(id=1, structure_id=1, investment_name="Co", investment_date=date(2023, 1, 1))
    assert investment_metrics(inv, [], date(2024, 1, 1))["irrPercent"] is None
