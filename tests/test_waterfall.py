import pytest
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from errors import LedgerConsistencyError, ValidationError
from metrics import lp_irr_after, xirr
from models import TierFill, WaterfallResult
from tiers import build_default_tiers
from waterfall import build_waterfall_state, check_result, run_waterfall

D = Decimal
AS_OF = date(2024, 1, 1)


def test_reference_scenario(default_ladder, one_year_state):
    """1.2M one year after 1M contributed: capital, 8% pref, full catch-up, 80/20 split"""
    result = run_waterfall(1_200_000, default_ladder, one_year_state, AS_OF)

    assert result.tier_amounts == [D("1000000.00"), D("80000.00"), D("20000.00"), D("100000.00")]
    assert result.lp_total == D("1160000.00")
    assert result.gp_total == D("40000.00")
    assert result.management_fee == D("0.00")

    carry = result.fills[3]
    assert carry.lp_amount == D("80000.00")
    assert carry.gp_amount == D("20000.00")


def test_as_dict_shape(default_ladder, one_year_state):
    out = run_waterfall(1_200_000, default_ladder, one_year_state, AS_OF).as_dict()
    assert out == {
        "tierAmounts": [1000000.0, 80000.0, 20000.0, 100000.0],
        "lpTotal": 1160000.0,
        "gpTotal": 40000.0,
        "managementFee": 0.0,
    }


def test_partial_return_of_capital(default_ladder, one_year_state):
    result = run_waterfall(500_000, default_ladder, one_year_state, AS_OF)
    assert result.tier_amounts == [D("500000.00"), D("0.00"), D("0.00"), D("0.00")]
    assert result.gp_total == D("0.00")


def test_zero_amount_gives_zero_result(default_ladder, one_year_state):
    result = run_waterfall(0, default_ladder, one_year_state, AS_OF)
    assert result.tier_amounts == [D("0.00")] * 4
    assert result.lp_total == result.gp_total == D("0.00")


def test_negative_amount_rejected(default_ladder, one_year_state):
    with pytest.raises(ValidationError):
        run_waterfall(-1, default_ladder, one_year_state, AS_OF)


def test_management_fee_carved_out_first(default_ladder, one_year_state):
    result = run_waterfall(1_200_000, default_ladder, one_year_state, AS_OF, management_fee=24_000)

    assert result.management_fee == D("24000.00")
    assert sum(result.tier_amounts) == D("1176000.00")
    assert result.tier_amounts[:3] == [D("1000000.00"), D("80000.00"), D("20000.00")]
    assert result.tier_amounts[3] == D("76000.00")
    assert result.lp_total + result.gp_total == D("1176000.00")


def test_fee_larger_than_distribution_rejected(default_ladder, one_year_state):
    with pytest.raises(ValidationError):
        run_waterfall(1_000, default_ladder, one_year_state, AS_OF, management_fee=1_001)


@pytest.mark.parametrize("amount", ["0.01", "999.99", "1234567.89", "1080000.01", "98765432.10"])
def test_tier_sum_is_exact(amount, default_ladder):
    state = build_waterfall_state([(date(2022, 3, 15), D("750000")), (date(2022, 11, 2), D("250000.33"))], [])
    result = run_waterfall(D(amount), default_ladder, state, date(2024, 7, 19))

    assert sum(result.tier_amounts) == D(amount)
    assert result.lp_total + result.gp_total == D(amount)
    assert all(f.amount >= 0 and f.lp_amount >= 0 and f.gp_amount >= 0 for f in result.fills)


def test_hurdle_tier_brings_lp_irr_to_hurdle(default_ladder):
    start, end = date(2022, 6, 15), date(2024, 3, 1)
    state = build_waterfall_state([(start, D("1000000"))], [])

    result = run_waterfall(5_000_000, default_ladder, state, end)

    lp_through_pref = result.fills[0].lp_amount + result.fills[1].lp_amount
    irr = xirr([(start, -1_000_000.0), (end, float(lp_through_pref))])
    assert irr == pytest.approx(0.08, abs=1e-6)


def test_lp_irr_after_pref_only_distribution(default_ladder):
    start, end = date(2022, 6, 15), date(2024, 3, 1)
    state = build_waterfall_state([(start, D("1000000"))], [])
    full_run = run_waterfall(5_000_000, default_ladder, state, end)
    through_pref = full_run.fills[0].amount + full_run.fills[1].amount

    result = run_waterfall(through_pref, default_ladder, state, end)
    assert result.gp_total == D("0.00")
    assert lp_irr_after(state, result, end) == pytest.approx(0.08, abs=1e-6)


def test_hurdle_credits_earlier_receipts(default_ladder):
    """A second distribution only tops the LP up to the hurdle"""
    state = build_waterfall_state([(date(2023, 1, 1), D("1000000"))], [])
    first = run_waterfall(1_000_000, default_ladder, state, date(2023, 7, 1))
    assert first.tier_amounts == [D("1000000.00"), D("0.00"), D("0.00"), D("0.00")]

    lines = [
        {"distribution_date": date(2023, 7, 1), "tier_number": f.tier_number,
         "amount": f.amount, "lp_amount": f.lp_amount, "gp_amount": f.gp_amount}
        for f in first.fills
    ]
    state = build_waterfall_state([(date(2023, 1, 1), D("1000000"))], lines)
    second = run_waterfall(200_000, default_ladder, state, AS_OF)

    # 1,000,000 * 1.08 less 1,000,000 carried forward from 2023-07-01 (184 days)
    expected = D("1000000") * D(repr(1.08)) - D("1000000") * D(repr(1.08 ** (184 / 365.0)))
    assert second.tier_amounts[0] == D("0.00")
    assert abs(second.tier_amounts[1] - expected) <= D("0.01")


def test_cumulative_state_sends_everything_to_carry(default_ladder, one_year_state):
    first = run_waterfall(1_200_000, default_ladder, one_year_state, AS_OF)
    lines = [
        {"distribution_date": AS_OF, "tier_number": f.tier_number,
         "amount": f.amount, "lp_amount": f.lp_amount, "gp_amount": f.gp_amount}
        for f in first.fills
    ]
    state = build_waterfall_state([(date(2023, 1, 1), D("1000000"))], lines)

    second = run_waterfall(100_000, default_ladder, state, AS_OF)
    assert second.tier_amounts == [D("0.00"), D("0.00"), D("0.00"), D("100000.00")]
    assert second.gp_total == D("20000.00")


def test_threshold_amount_caps_tier(one_year_state):
    ladder = build_default_tiers(1)
    ladder[0].threshold_amount = D("300000")

    result = run_waterfall(500_000, ladder, one_year_state, AS_OF)
    assert result.tier_amounts == [D("300000.00"), D("200000.00"), D("0.00"), D("0.00")]


def test_catch_up_skipped_when_share_not_above_carry(one_year_state):
    ladder = build_default_tiers(1)
    ladder[2].lp_share_percent = D("80")
    ladder[2].gp_share_percent = D("20")

    result = run_waterfall(1_200_000, ladder, one_year_state, AS_OF)
    assert result.tier_amounts == [D("1000000.00"), D("80000.00"), D("0.00"), D("120000.00")]


def test_gp_rounding_keeps_lp_complement(one_year_state):
    ladder = build_default_tiers(1, carried_interest=D("33.33"))
    result = run_waterfall(D("2000000.03"), ladder, one_year_state, AS_OF)

    carry = result.fills[3]
    assert carry.amount > 0
    assert carry.gp_amount == (carry.amount * D("0.3333")).quantize(D("0.01"), rounding=ROUND_HALF_UP)
    assert carry.lp_amount + carry.gp_amount == carry.amount


def test_missing_ladder_rejected(one_year_state):
    with pytest.raises(ValidationError, match="no waterfall ladder"):
        run_waterfall(100, [], one_year_state, AS_OF)


def test_invalid_ladder_rejected(one_year_state):
    ladder = build_default_tiers(1)
    ladder[3].gp_share_percent = D("30")
    with pytest.raises(ValidationError) as exc:
        run_waterfall(100, ladder, one_year_state, AS_OF)
    assert any("sum to 100" in e for e in exc.value.errors)


def test_check_result_detects_drift():
    bad = WaterfallResult(
        total_amount=D("100.00"),
        management_fee=D("0.00"),
        fills=[TierFill(1, "Return of Capital", None, D("60.00"), D("60.00"), D("0.00")),
               TierFill(4, "Carried Interest", None, D("30.00"), D("24.00"), D("6.00"))],
    )
    with pytest.raises(LedgerConsistencyError):
        check_result(bad)


def test_build_state_aggregates_prior_lines():
    lines = [
        {"distribution_date": date(2023, 6, 30), "tier_number": 1, "amount": D("400"), "lp_amount": D("400"), "gp_amount": D("0")},
        {"distribution_date": date(2023, 6, 30), "tier_number": 4, "amount": D("100"), "lp_amount": D("80"), "gp_amount": D("20")},
        {"distribution_date": date(2023, 12, 31), "tier_number": 1, "amount": D("100"), "lp_amount": D("100"), "gp_amount": D("0")},
    ]
    state = build_waterfall_state([(date(2023, 1, 1), D("1000"))], lines)

    assert state.capital_returned == D("500.00")
    assert state.carry_paid == D("20.00")
    assert state.lp_distributions == [(date(2023, 6, 30), D("480.00")), (date(2023, 12, 31), D("100.00"))]
