"""
ownership.py
Resolve investor ownership percentages and structure hierarchy

Handles:
- Ownership from explicit percentages or from commitments
- Consistency check (percentages sum to 100)
- Parent chains for nested structures (max depth 5)
"""

import logging
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Set

from config import HUNDRED, MAX_HIERARCHY_LEVEL, OWNERSHIP_TOLERANCE
from errors import LedgerConsistencyError, ValidationError
from models import InvestorMembership, OwnershipShare, Structure
from utils import to_decimal

logger = logging.getLogger(__name__)


def resolve_ownership(memberships: List[InvestorMembership]) -> List[OwnershipShare]:
    """
    Ownership percentage per investor for one structure

    If every membership carries an explicit ownership_percent those are
    used; otherwise percentages are commitment / total commitment.
    Duplicate investor rows are consolidated.  The caller is expected to
    have checked that the structure exists.

    Returns:
        List of OwnershipShare sorted by investor_id (empty when the
        structure has no investors)

    Raises:
        LedgerConsistencyError: percentages do not sum to ~100
    """
    if not memberships:
        return []

    explicit = all(m.ownership_percent is not None for m in memberships)

    pct_by_investor: Dict[str, Decimal] = {}
    if explicit:
        for m in memberships:
            pct_by_investor[m.investor_id] = (
                pct_by_investor.get(m.investor_id, Decimal("0")) + to_decimal(m.ownership_percent)
            )
    else:
        total_commitment = sum((to_decimal(m.commitment) for m in memberships), Decimal("0"))
        if total_commitment <= 0:
            raise LedgerConsistencyError(
                "Cannot derive ownership: memberships have no ownership percent and no commitments"
            )
        for m in memberships:
            share = to_decimal(m.commitment) / total_commitment * HUNDRED
            pct_by_investor[m.investor_id] = pct_by_investor.get(m.investor_id, Decimal("0")) + share

    shares = [OwnershipShare(inv, pct) for inv, pct in sorted(pct_by_investor.items())]
    check_ownership_total(shares)
    return shares


def check_ownership_total(shares: List[OwnershipShare]) -> Decimal:
    """Raise unless a non-empty share set sums to 100 within tolerance"""
    total = sum((s.ownership_percent for s in shares), Decimal("0"))
    if shares and abs(total - HUNDRED) > OWNERSHIP_TOLERANCE:
        raise LedgerConsistencyError(f"Ownership percentages sum to {total}, expected 100")
    negatives = [s.investor_id for s in shares if s.ownership_percent < 0]
    if negatives:
        raise LedgerConsistencyError(f"Negative ownership for investors: {negatives}")
    return total


# ============================================================
# STRUCTURE HIERARCHY
# ============================================================

def structure_lineage(
    structure: Structure,
    lookup: Callable[[int], Structure],
) -> List[Structure]:
    """
    Walk parent links from a structure up to its root

    Args:
        structure: Starting structure
        lookup: Function id -> Structure (raises NotFoundError)

    Returns:
        [structure, parent, grandparent, ...]
    """
    chain = [structure]
    visited: Set[int] = {structure.id} if structure.id is not None else set()
    current = structure

    while current.parent_structure_id is not None:
        pid = current.parent_structure_id
        if pid in visited:
            logger.warning(f"Circular structure parent chain at {pid}")
            break
        visited.add(pid)
        current = lookup(pid)
        chain.append(current)

    return chain


def child_hierarchy_level(parent: Optional[Structure]) -> int:
    """
    Hierarchy level a new child of parent would have

    Raises:
        ValidationError: parent already sits at the maximum depth
    """
    if parent is None:
        return 1
    if parent.hierarchy_level >= MAX_HIERARCHY_LEVEL:
        raise ValidationError(f"Maximum hierarchy level ({MAX_HIERARCHY_LEVEL}) reached")
    return parent.hierarchy_level + 1
