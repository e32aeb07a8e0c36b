"""
allocations.py
Split pooled amounts (capital calls, distribution LP pools) across investors
"""

import logging
from decimal import Decimal
from typing import List, Tuple

from config import HUNDRED
from errors import LedgerConsistencyError, ValidationError
from models import (CapitalCall, CapitalCallAllocation, Distribution,
                    DistributionAllocation, OwnershipShare)
from ownership import check_ownership_total
from utils import to_money

logger = logging.getLogger(__name__)


def split_pool(pool_amount, shares: List[OwnershipShare]) -> List[Tuple[OwnershipShare, Decimal]]:
    """
    Pro-rata split of pool_amount by ownership, exact to the cent

    Each line is pool * pct / 100 rounded half-up.  The rounding residual
    (positive or negative) goes to the largest-percentage investor, ties
    broken by lowest investor_id, so the lines always sum to the pool.

    Returns:
        [(share, amount)] in the order of shares; empty when shares is empty
    """
    pool = to_money(pool_amount)
    if pool < 0:
        raise ValidationError(f"Pool amount must not be negative: {pool}")
    if not shares:
        return []

    check_ownership_total(shares)

    lines = [(s, to_money(pool * s.ownership_percent / HUNDRED)) for s in shares]
    residual = pool - sum((amt for _, amt in lines), Decimal("0.00"))

    if residual:
        anchor = min(
            range(len(shares)),
            key=lambda i: (-shares[i].ownership_percent, shares[i].investor_id),
        )
        s, amt = lines[anchor]
        lines[anchor] = (s, amt + residual)
        logger.debug(f"Assigned rounding residual {residual} to investor {s.investor_id}")

    if sum((amt for _, amt in lines), Decimal("0.00")) != pool:
        raise LedgerConsistencyError(f"Allocations do not sum to pool {pool}")
    if any(amt < 0 for _, amt in lines):
        raise LedgerConsistencyError("Negative allocation after residual assignment")

    return lines


def build_capital_call_allocations(
    call: CapitalCall,
    shares: List[OwnershipShare],
) -> List[CapitalCallAllocation]:
    """One Pending allocation per investor, due when the call is due"""
    return [
        CapitalCallAllocation(
            capital_call_id=call.id,
            investor_id=s.investor_id,
            ownership_percent=s.ownership_percent,
            allocated_amount=amt,
            due_date=call.due_date,
        )
        for s, amt in split_pool(call.total_call_amount, shares)
    ]


def build_distribution_allocations(
    distribution: Distribution,
    shares: List[OwnershipShare],
) -> List[DistributionAllocation]:
    """One Pending allocation per investor out of the LP pool"""
    return [
        DistributionAllocation(
            distribution_id=distribution.id,
            investor_id=s.investor_id,
            ownership_percent=s.ownership_percent,
            allocated_amount=amt,
            payment_date=distribution.distribution_date,
        )
        for s, amt in split_pool(distribution.lp_total_amount, shares)
    ]


def allocations_as_dict(allocations: List) -> dict:
    """Caller-facing shape of a fan-out"""
    return {
        "allocations": [
            {
                "investorId": a.investor_id,
                "allocatedAmount": float(a.allocated_amount),
                "paidAmount": float(a.paid_amount),
                "remainingAmount": float(a.remaining_amount),
                "status": a.status,
            }
            for a in allocations
        ]
    }
