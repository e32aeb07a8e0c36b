"""
waterfall.py
Waterfall allocation engine

KEY PRINCIPLES:
- Management fee is carved out of the gross distribution before any tier fills
- Tiers fill strictly in order 1 -> 4 from whatever cash remains
- Each tier takes min(remaining, capacity); tier 4 has no capacity and absorbs the rest
- Capacities are cumulative across every waterfall already applied to the structure
- Hurdle tiers convert an IRR into dollars by compounding (Act/365) each
  contribution to the distribution date and crediting earlier LP receipts
- Catch-up fills until GP holds carry% of all profit paid above capital
- All amounts are cents-exact: tier 4 takes the exact remainder, LP takes
  the exact complement of the rounded GP slice
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from config import DEFAULT_HURDLE_RATE, TIER_CARRIED_INTEREST, tier_role
from errors import LedgerConsistencyError, ValidationError
from metrics import hurdle_future_value
from models import TierFill, WaterfallResult, WaterfallState, WaterfallTier
from tiers import validate_ladder
from utils import to_decimal, to_money

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


# ============================================================
# TIER CAPACITIES
# ============================================================

def _amount_cap_capacity(tier: WaterfallTier, state: WaterfallState) -> Decimal:
    """Cumulative dollar cap: threshold less what the tier already paid"""
    return max(ZERO, to_money(tier.threshold_amount) - state.paid_in_tier(tier.tier_number))


def _return_of_capital_capacity(state: WaterfallState) -> Decimal:
    """Capital contributed and not yet returned"""
    return max(ZERO, state.capital_contributed - state.capital_returned)


def _hurdle_capacity(
    tier: WaterfallTier,
    state: WaterfallState,
    as_of: date,
    hurdle_pct: Decimal,
    lp_filled_this_run: Decimal,
) -> Decimal:
    """
    Tier dollars needed for the LPs to reach hurdle_pct IRR on as_of

    The LP receipt that closes the hurdle already counts LP cash filled by
    earlier tiers in this run (return of capital); the remainder is grossed
    up by the tier's LP share.
    """
    lp_fraction = tier.lp_fraction
    if lp_fraction <= 0:
        logger.warning(f"Tier {tier.tier_number} has a hurdle but no LP share; skipping")
        return ZERO

    needed = hurdle_future_value(
        state.contributions, state.lp_distributions, as_of, float(hurdle_pct) / 100.0
    )
    lp_short = needed - lp_filled_this_run
    if lp_short <= 0:
        return ZERO
    return to_money(lp_short / lp_fraction)


def _catch_up_capacity(
    tier: WaterfallTier,
    carry_fraction: Decimal,
    profit_paid: Decimal,
    gp_profit_paid: Decimal,
) -> Decimal:
    """
    Tier dollars until the GP holds carry_fraction of all profit paid

    With tier GP share g and carry c, filling T gives
        gp_profit_paid + g*T == c * (profit_paid + T)
    so T = (c*P - G) / (g - c).  When g <= c the catch-up can never close
    and the tier is skipped.
    """
    g = tier.gp_fraction
    c = carry_fraction
    if g <= c:
        logger.debug(f"Catch-up tier {tier.tier_number} GP share {g} <= carry {c}; skipped")
        return ZERO
    t = (c * profit_paid - gp_profit_paid) / (g - c)
    return max(ZERO, to_money(t))


def tier_capacity(
    tier: WaterfallTier,
    ladder: List[WaterfallTier],
    state: WaterfallState,
    as_of: date,
    run_paid: Dict[int, Decimal],
    run_gp_paid: Dict[int, Decimal],
    run_lp_total: Decimal,
    hurdle_rate=DEFAULT_HURDLE_RATE,
) -> Optional[Decimal]:
    """
    Dollar capacity of one tier for this run; None means unbounded

    Routing:
        tier 4 (carried interest)        -> unbounded
        threshold_amount set             -> cumulative dollar cap
        threshold_irr set                -> hurdle at that IRR
        tier 1 without threshold         -> unreturned capital
        tier 2 without threshold         -> hurdle at the structure rate
        tier 3 without threshold         -> GP catch-up to tier-4 carry
    """
    if tier.tier_number == TIER_CARRIED_INTEREST:
        return None

    if tier.threshold_amount is not None:
        return _amount_cap_capacity(tier, state)

    role = tier_role(tier.tier_number)

    if tier.threshold_irr is not None or role == "preferred_return":
        hurdle = to_decimal(tier.threshold_irr if tier.threshold_irr is not None else hurdle_rate)
        return _hurdle_capacity(tier, state, as_of, hurdle, run_lp_total)

    if role == "return_of_capital":
        return _return_of_capital_capacity(state)

    if role == "catch_up":
        carry_tier = next(t for t in ladder if t.tier_number == TIER_CARRIED_INTEREST)
        profit_tiers = [t.tier_number for t in ladder if 1 < t.tier_number < tier.tier_number]
        profit_paid = sum(
            (state.paid_in_tier(n) + run_paid.get(n, ZERO) for n in profit_tiers + [tier.tier_number]),
            ZERO,
        )
        gp_profit_paid = sum(
            (state.gp_paid_in_tier(n) + run_gp_paid.get(n, ZERO) for n in profit_tiers + [tier.tier_number]),
            ZERO,
        )
        return _catch_up_capacity(tier, carry_tier.gp_fraction, profit_paid, gp_profit_paid)

    return None


# ============================================================
# WATERFALL PASS
# ============================================================

def run_waterfall(
    total_amount,
    tiers: List[WaterfallTier],
    state: WaterfallState,
    as_of: date,
    management_fee=ZERO,
    hurdle_rate=DEFAULT_HURDLE_RATE,
) -> WaterfallResult:
    """
    Allocate one distribution across the four-tier ladder

    Args:
        total_amount: Gross distribution (>= 0)
        tiers: The structure's ladder (validated here; inactive tiers ignored)
        state: Cumulative position before this distribution
        as_of: Distribution date (hurdle compounding end date)
        management_fee: Pre-waterfall carve-out (0 <= fee <= total)
        hurdle_rate: Percent hurdle for a tier 2 with no threshold_irr

    Returns:
        WaterfallResult with one TierFill per tier

    Raises:
        ValidationError: negative amount, bad fee, or invalid ladder
        LedgerConsistencyError: fills do not reconcile to the net amount
    """
    total = to_money(total_amount)
    if total < 0:
        raise ValidationError(f"Distribution amount must not be negative: {total}")

    fee = to_money(management_fee)
    if fee < 0 or fee > total:
        raise ValidationError(f"Management fee {fee} must be between 0 and the distribution amount {total}")

    ladder = validate_ladder(tiers)
    net = total - fee
    remaining = net

    run_paid: Dict[int, Decimal] = {}
    run_gp_paid: Dict[int, Decimal] = {}
    run_lp_total = ZERO
    fills: List[TierFill] = []

    for tier in ladder:
        if remaining <= 0:
            fills.append(TierFill(tier.tier_number, tier.tier_name, None, ZERO, ZERO, ZERO))
            continue

        capacity = tier_capacity(
            tier, ladder, state, as_of, run_paid, run_gp_paid, run_lp_total, hurdle_rate
        )
        amount = remaining if capacity is None else min(remaining, capacity)

        gp_amount = to_money(amount * tier.gp_fraction)
        lp_amount = amount - gp_amount

        fills.append(TierFill(tier.tier_number, tier.tier_name, capacity, amount, lp_amount, gp_amount))
        run_paid[tier.tier_number] = amount
        run_gp_paid[tier.tier_number] = gp_amount
        run_lp_total += lp_amount
        remaining -= amount

        logger.debug(
            f"Tier {tier.tier_number} ({tier.tier_name}): capacity={capacity} "
            f"filled={amount} lp={lp_amount} gp={gp_amount} remaining={remaining}"
        )

    result = WaterfallResult(total_amount=total, management_fee=fee, fills=fills)
    check_result(result)
    return result


def check_result(result: WaterfallResult) -> None:
    """Assert the ledger invariants of a waterfall result"""
    negatives = [f.tier_number for f in result.fills
                 if f.amount < 0 or f.lp_amount < 0 or f.gp_amount < 0]
    if negatives:
        raise LedgerConsistencyError(f"Negative fill in tiers {negatives}")

    tier_sum = sum(result.tier_amounts, ZERO)
    if tier_sum != result.net_amount:
        raise LedgerConsistencyError(
            f"Tier amounts sum to {tier_sum}, expected {result.net_amount}"
        )
    if result.lp_total + result.gp_total != tier_sum:
        raise LedgerConsistencyError(
            f"LP {result.lp_total} + GP {result.gp_total} != tier total {tier_sum}"
        )


# ============================================================
# STATE FROM HISTORY
# ============================================================

def build_waterfall_state(
    contributions: Iterable[Tuple[date, Decimal]],
    prior_tier_lines: Iterable[dict],
) -> WaterfallState:
    """
    Assemble the cumulative state from stored history

    Args:
        contributions: [(date, amount)] capital paid in by LPs
        prior_tier_lines: rows of earlier applied distributions with keys
            distribution_date, tier_number, amount, lp_amount, gp_amount

    Returns:
        WaterfallState
    """
    state = WaterfallState(
        contributions=sorted(((d, to_money(a)) for d, a in contributions if a), key=lambda t: t[0])
    )

    lp_by_date: Dict[date, Decimal] = {}
    for line in prior_tier_lines:
        n = int(line["tier_number"])
        state.tier_paid[n] = state.paid_in_tier(n) + to_money(line["amount"])
        state.tier_gp_paid[n] = state.gp_paid_in_tier(n) + to_money(line["gp_amount"])
        d = line["distribution_date"]
        lp_by_date[d] = lp_by_date.get(d, ZERO) + to_money(line["lp_amount"])

    state.lp_distributions = sorted(((d, a) for d, a in lp_by_date.items() if a > 0), key=lambda t: t[0])
    return state
