"""
tiers.py
Waterfall tier ladder: validation, default construction and summaries

A structure's ladder is four tiers:
1. Return of Capital  - 100% LP until contributed capital is returned
2. Preferred Return   - 100% LP until the hurdle IRR is met
3. GP Catch-up        - 100% GP until GP holds its carry share of profit
4. Carried Interest   - remaining cash split (100-carry)/carry
"""

import logging
from decimal import Decimal
from typing import List, Optional

from config import (DEFAULT_CARRIED_INTEREST, DEFAULT_HURDLE_RATE, HUNDRED,
                    TIER_NUMBERS)
from errors import ValidationError
from models import TierValidation, WaterfallTier
from utils import fmt_money, to_decimal

logger = logging.getLogger(__name__)


def validate_tier(tier: WaterfallTier) -> TierValidation:
    """
    Check one tier's invariants.

    Errors accumulate; nothing short-circuits.  Pure, no I/O.
    """
    errors = []

    if tier.tier_number is None or tier.tier_number < 1 or tier.tier_number > 4:
        errors.append("Tier number must be between 1 and 4")

    lp = to_decimal(tier.lp_share_percent)
    gp = to_decimal(tier.gp_share_percent)

    if lp + gp != HUNDRED:
        errors.append("LP share and GP share must sum to 100%")

    if lp < 0 or lp > HUNDRED:
        errors.append("LP share must be between 0 and 100")

    if gp < 0 or gp > HUNDRED:
        errors.append("GP share must be between 0 and 100")

    if tier.threshold_irr is not None:
        irr = to_decimal(tier.threshold_irr)
        if irr < 0 or irr > HUNDRED:
            errors.append("Threshold IRR must be between 0 and 100")

    if tier.threshold_amount is not None and to_decimal(tier.threshold_amount) < 0:
        errors.append("Threshold amount must be positive")

    if tier.threshold_amount is not None and tier.threshold_irr is not None:
        errors.append("Only one threshold may be set (amount or IRR)")

    return TierValidation(is_valid=not errors, errors=errors)


def validate_ladder(tiers: List[WaterfallTier]) -> List[WaterfallTier]:
    """
    Validate a ladder before it is persisted or consumed by a waterfall run.

    Only active tiers are considered.  Exactly one tier per number 1-4 is
    required.

    Returns:
        Active tiers sorted by tier_number

    Raises:
        ValidationError: listing every problem found
    """
    active = [t for t in tiers if t.is_active]
    if not active:
        raise ValidationError("Structure has no waterfall ladder configured")

    errors = []
    for t in active:
        result = validate_tier(t)
        errors.extend(f"Tier {t.tier_number}: {e}" for e in result.errors)

    numbers = [t.tier_number for t in active]
    dupes = sorted({n for n in numbers if numbers.count(n) > 1})
    if dupes:
        errors.append(f"Duplicate tier numbers: {dupes}")
    missing = [n for n in TIER_NUMBERS if n not in numbers]
    if missing:
        errors.append(f"Missing tier numbers: {missing}")

    if errors:
        logger.debug(f"Ladder rejected: {errors}")
        raise ValidationError("Invalid waterfall ladder", errors)

    return sorted(active, key=lambda t: t.tier_number)


def build_default_tiers(
    structure_id: Optional[int],
    hurdle_rate=DEFAULT_HURDLE_RATE,
    carried_interest=DEFAULT_CARRIED_INTEREST,
    created_by: Optional[str] = None,
) -> List[WaterfallTier]:
    """Construct the standard four-tier ladder (not persisted)"""
    hurdle = to_decimal(hurdle_rate)
    carry = to_decimal(carried_interest)

    tiers = [
        WaterfallTier(
            structure_id=structure_id,
            tier_number=1,
            tier_name="Return of Capital",
            lp_share_percent=Decimal(100),
            gp_share_percent=Decimal(0),
            description="100% of distributions go to LPs until they receive their invested capital back",
            created_by=created_by,
        ),
        WaterfallTier(
            structure_id=structure_id,
            tier_number=2,
            tier_name="Preferred Return",
            lp_share_percent=Decimal(100),
            gp_share_percent=Decimal(0),
            threshold_irr=hurdle,
            description=f"100% of remaining distributions go to LPs until they achieve {hurdle}% IRR",
            created_by=created_by,
        ),
        WaterfallTier(
            structure_id=structure_id,
            tier_number=3,
            tier_name="GP Catch-up",
            lp_share_percent=Decimal(0),
            gp_share_percent=Decimal(100),
            description=f"100% of remaining distributions go to GP until GP receives {carry}% of total profits",
            created_by=created_by,
        ),
        WaterfallTier(
            structure_id=structure_id,
            tier_number=4,
            tier_name="Carried Interest",
            lp_share_percent=HUNDRED - carry,
            gp_share_percent=carry,
            description=f"Remaining distributions split {HUNDRED - carry}% LP / {carry}% GP",
            created_by=created_by,
        ),
    ]

    validate_ladder(tiers)
    return tiers


def merge_tier_update(tier: WaterfallTier, updates: dict) -> WaterfallTier:
    """
    Apply a partial update to a tier and re-validate.

    structure_id, id and created_by are never overwritten.
    """
    protected = {"id", "structure_id", "created_by"}
    fields = {k: v for k, v in updates.items() if k not in protected}
    unknown = [k for k in fields if not hasattr(tier, k)]
    if unknown:
        raise ValidationError(f"Unknown tier fields: {unknown}")

    merged = WaterfallTier(**{**tier.__dict__, **fields})
    result = validate_tier(merged)
    if not result.is_valid:
        raise ValidationError("Invalid waterfall tier", result.errors)
    return merged


def _threshold_label(tier: WaterfallTier) -> str:
    if tier.threshold_irr is not None:
        return f"{tier.threshold_irr}% IRR"
    if tier.threshold_amount is not None:
        return fmt_money(tier.threshold_amount)
    return "None"


def ladder_summary(structure_id: int, tiers: List[WaterfallTier]) -> dict:
    """Summary of the active ladder for display"""
    active = sorted((t for t in tiers if t.is_active), key=lambda t: t.tier_number)
    return {
        "structureId": structure_id,
        "totalTiers": len(active),
        "tiers": [
            {
                "tierNumber": t.tier_number,
                "tierName": t.tier_name,
                "lpShare": float(t.lp_share_percent),
                "gpShare": float(t.gp_share_percent),
                "threshold": _threshold_label(t),
            }
            for t in active
        ],
    }
