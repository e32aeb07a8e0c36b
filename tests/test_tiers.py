import pytest
from decimal import Decimal

from errors import ValidationError
from models import WaterfallTier
from tiers import (build_default_tiers, ladder_summary, merge_tier_update,
                   validate_ladder, validate_tier)

D = Decimal


def test_default_ladder_shape():
    tiers = build_default_tiers(5, hurdle_rate=8, carried_interest=20)

    assert [t.tier_name for t in tiers] == ["Return of Capital", "Preferred Return", "GP Catch-up", "Carried Interest"]
    assert [(t.lp_share_percent, t.gp_share_percent) for t in tiers] == [
        (D(100), D(0)), (D(100), D(0)), (D(0), D(100)), (D(80), D(20))
    ]
    assert tiers[1].threshold_irr == D(8)
    assert all(t.structure_id == 5 and t.is_active for t in tiers)
    assert "8% IRR" in tiers[1].description


def test_validate_tier_accumulates_errors():
    tier = WaterfallTier(structure_id=1, tier_number=5, tier_name="Bad",
                         lp_share_percent=D(60), gp_share_percent=D(30),
                         threshold_amount=D(-1), threshold_irr=D(150))
    result = validate_tier(tier)

    assert not result.is_valid
    assert result.errors == [
        "Tier number must be between 1 and 4",
        "LP share and GP share must sum to 100%",
        "Threshold IRR must be between 0 and 100",
        "Threshold amount must be positive",
        "Only one threshold may be set (amount or IRR)",
    ]


def test_validate_tier_share_range():
    tier = WaterfallTier(structure_id=1, tier_number=1, tier_name="X",
                         lp_share_percent=D(120), gp_share_percent=D(-20))
    errors = validate_tier(tier).errors
    assert "LP share must be between 0 and 100" in errors
    assert "GP share must be between 0 and 100" in errors


def test_ladder_missing_and_duplicate_numbers():
    tiers = build_default_tiers(1)
    tiers[3].tier_number = 3
    with pytest.raises(ValidationError) as exc:
        validate_ladder(tiers)
    assert "Duplicate tier numbers: [3]" in exc.value.errors
    assert "Missing tier numbers: [4]" in exc.value.errors


def test_inactive_tiers_ignored():
    old = build_default_tiers(1)
    for t in old:
        t.is_active = False
    ladder = validate_ladder(old + list(reversed(build_default_tiers(1, carried_interest=30))))
    assert [t.tier_number for t in ladder] == [1, 2, 3, 4]
    assert ladder[3].gp_share_percent == D(30)


def test_empty_ladder_rejected():
    with pytest.raises(ValidationError, match="no waterfall ladder"):
        validate_ladder([])


def test_merge_update_revalidates():
    tier = build_default_tiers(1)[3]
    merged = merge_tier_update(tier, {"lp_share_percent": D(70), "gp_share_percent": D(30), "structure_id": 99})
    assert merged.gp_share_percent == D(30)
    assert merged.structure_id == 1

    with pytest.raises(ValidationError):
        merge_tier_update(tier, {"gp_share_percent": D(50)})
    with pytest.raises(ValidationError):
        merge_tier_update(tier, {"no_such_field": 1})


def test_ladder_summary_thresholds():
    tiers = build_default_tiers(4)
    tiers[0].threshold_amount = D("250000")
    summary = ladder_summary(4, tiers)

    assert summary["structureId"] == 4
    assert summary["totalTiers"] == 4
    assert [t["threshold"] for t in summary["tiers"]] == ["$250,000.00", "8% IRR", "None", "None"]
    assert summary["tiers"][3]["lpShare"] == 80.0


def test_tier_rejects_both_thresholds():
    tier = build_default_tiers(1)[1]
    tier.threshold_amount = D("100000")
    result = validate_tier(tier)
    assert result.errors == ["Only one threshold may be set (amount or IRR)"]


def test_ladder_summary_zero_thresholds():
    tiers = build_default_tiers(1, hurdle_rate=0)
    tiers[0].threshold_amount = D("0")
    labels = [t["threshold"] for t in ladder_summary(1, tiers)["tiers"]]
    assert labels == ["$0.00", "0% IRR", "None", "None"]
