"""
metrics.py
Investment performance metrics: XIRR, MOIC, hurdle future value
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List, Tuple, Optional, TYPE_CHECKING
from scipy.optimize import brentq

from config import DAYS_PER_YEAR

if TYPE_CHECKING:
    from models import Investment, WaterfallResult, WaterfallState


def xnpv(rate: float, cfs: List[Tuple[date, float]]) -> float:
    """
    Net present value with irregular cashflow dates

    Args:
        rate: Annual discount rate (as decimal, e.g., 0.15 for 15%)
        cfs: List of (date, amount) tuples

    Returns:
        Net present value
    """
    if not cfs or rate <= -1.0:
        return float('inf')

    cfs = sorted(cfs, key=lambda t: t[0])
    t0 = cfs[0][0]

    npv = 0.0
    for d, amount in cfs:
        years = (d - t0).days / DAYS_PER_YEAR  # Use 365 to match Excel XIRR convention
        npv += amount / ((1 + rate) ** years)

    return npv


def xirr(cfs: List[Tuple[date, float]]) -> Optional[float]:
    """
    Internal Rate of Return with irregular cashflow dates

    Args:
        cfs: List of (date, amount) tuples
             Negative amounts = investments
             Positive amounts = returns

    Returns:
        Annual IRR as decimal (e.g., 0.15 for 15%)
        None if unable to calculate
    """
    if not cfs or len(cfs) < 2:
        return None

    amounts = [a for _, a in cfs]

    # Must have both negative (investments) and positive (returns)
    if min(amounts) >= 0 or max(amounts) <= 0:
        return None

    try:
        # Find root between -99% and 1000% annual return
        irr = brentq(lambda r: xnpv(r, cfs), -0.99, 10.0, maxiter=100)
        return float(irr)
    except (ValueError, RuntimeError):
        # No root found in range
        return None


def hurdle_future_value(
    contributions: List[Tuple[date, Decimal]],
    receipts: List[Tuple[date, Decimal]],
    as_of: date,
    annual_rate: float,
) -> Decimal:
    """
    LP receipt needed on as_of to bring the LP's IRR up to annual_rate

    Each contribution compounds at annual_rate (Act/365) from its date to
    as_of; each earlier receipt is carried forward the same way and
    credited.  Setting XNPV(annual_rate) of the flows plus a final receipt
    x on as_of to zero gives exactly

        x = sum(c_i * (1+r)^t_i) - sum(l_j * (1+r)^t_j)

    so no root finding is needed.  Flows dated after as_of are discounted
    back, which keeps the identity intact.  Never negative.

    Args:
        contributions: [(date, amount)] paid-in capital, positive amounts
        receipts: [(date, amount)] earlier LP receipts, positive amounts
        as_of: Distribution date
        annual_rate: Hurdle as decimal (0.08 for 8%)

    Returns:
        Required receipt as Decimal (unrounded)
    """
    if annual_rate <= -1.0:
        raise ValueError(f"Hurdle rate must exceed -100%: {annual_rate}")

    growth = 1.0 + annual_rate

    def fv(d: date, amount: Decimal) -> Decimal:
        years = (as_of - d).days / DAYS_PER_YEAR
        return Decimal(amount) * Decimal(repr(growth ** years))

    owed = sum((fv(d, a) for d, a in contributions), Decimal("0"))
    credited = sum((fv(d, a) for d, a in receipts), Decimal("0"))
    return max(Decimal("0"), owed - credited)


def lp_irr_after(state: "WaterfallState", result: "WaterfallResult", as_of: date) -> Optional[float]:
    """LP XIRR including the LP side of a waterfall result received on as_of"""
    cfs = state.lp_cashflows()
    if result.lp_total > 0:
        cfs.append((as_of, float(result.lp_total)))
    return xirr(cfs)


def calculate_moic(
    contributions: List[Tuple[date, float]],
    distributions: List[Tuple[date, float]],
    unrealized_value: float = 0.0
) -> float:
    """
    Multiple on Invested Capital

    MOIC = (Total Distributions + Unrealized Value) / Total Contributions

    Args:
        contributions: [(date, amount)] where amount < 0
        distributions: [(date, amount)] where amount > 0 (includes capital returns)
        unrealized_value: Current NAV of remaining investment

    Returns:
        MOIC as multiple (e.g., 1.5 for 1.5x)
    """
    total_invested = abs(sum(amt for _, amt in contributions if amt < 0))

    if total_invested == 0:
        return 0.0

    total_distributed = sum(amt for _, amt in distributions if amt > 0)

    return (total_distributed + unrealized_value) / total_invested


def investment_metrics(
    inv: "Investment",
    receipts: List[Tuple[date, float]],
    as_of_date: date,
) -> dict:
    """
    IRR, MOIC and total returns for one portfolio investment

    The outlay is the equity invested plus principal provided, dated at
    investment_date.  Unrealized value is the current equity value plus
    outstanding principal for active positions, or nothing once exited.

    Args:
        inv: Investment record
        receipts: [(date, amount)] cash returned by the investment
        as_of_date: Valuation date for the terminal value

    Returns:
        Dictionary with irrPercent (percent, or None), moic, totalReturns
    """
    outlay = float(inv.equity_invested) + float(inv.principal_provided)
    total_returns = sum(a for _, a in receipts if a > 0)

    if outlay <= 0 or inv.investment_date is None:
        return {'irrPercent': None, 'moic': 0.0, 'totalReturns': total_returns}

    if inv.status == "Exited":
        unrealized = 0.0
        if inv.equity_exit_value is not None:
            exit_day = inv.exit_date or as_of_date
            receipts = receipts + [(exit_day, float(inv.equity_exit_value))]
    else:
        unrealized = float(inv.equity_current_value) + float(inv.outstanding_principal)

    contributions = [(inv.investment_date, -outlay)]
    cfs = contributions + list(receipts)
    if unrealized > 0:
        cfs.append((as_of_date, unrealized))

    irr = xirr(cfs)
    moic = calculate_moic(contributions, receipts, unrealized)

    return {
        'irrPercent': None if irr is None else irr * 100.0,
        'moic': moic,
        'totalReturns': total_returns,
    }
