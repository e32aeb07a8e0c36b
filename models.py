"""
models.py
Data structures for the fund ledger and waterfall engine
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from config import (
    ALLOCATION_PENDING, CALL_DRAFT, DEFAULT_CARRIED_INTEREST, DEFAULT_CURRENCY,
    DEFAULT_HURDLE_RATE, DEFAULT_MANAGEMENT_FEE, DEFAULT_WATERFALL_TYPE,
    DISTRIBUTION_DRAFT, INVESTMENT_ACTIVE, TIER_NUMBERS,
)

ZERO = Decimal("0.00")


def _zero() -> Decimal:
    return Decimal("0.00")


# ============================================================
# USERS
# ============================================================

@dataclass
class User:
    """Authenticated caller. role is one of the ROLE_* ids in config."""
    id: str
    role: int
    name: str = ""


# ============================================================
# STRUCTURES & MEMBERSHIP
# ============================================================

@dataclass
class Structure:
    """
    Investment vehicle (fund, SPV, trust, debt facility)

    total_called / total_distributed / total_invested are running
    accumulators; they only move forward through capital-call and
    distribution workflows.
    """
    id: Optional[int]
    name: str
    structure_type: str = "Fund"
    parent_structure_id: Optional[int] = None
    hierarchy_level: int = 1
    total_commitment: Decimal = field(default_factory=_zero)
    total_called: Decimal = field(default_factory=_zero)
    total_distributed: Decimal = field(default_factory=_zero)
    total_invested: Decimal = field(default_factory=_zero)
    management_fee: Decimal = Decimal(DEFAULT_MANAGEMENT_FEE)
    carried_interest: Decimal = Decimal(DEFAULT_CARRIED_INTEREST)
    hurdle_rate: Decimal = Decimal(DEFAULT_HURDLE_RATE)
    waterfall_type: str = DEFAULT_WATERFALL_TYPE
    inception_date: Optional[date] = None
    base_currency: str = DEFAULT_CURRENCY
    status: str = "Active"
    created_by: Optional[str] = None


@dataclass
class InvestorMembership:
    """An investor's seat in a structure.

    ownership_percent may be left empty, in which case ownership is
    derived from commitments.
    """
    structure_id: int
    investor_id: str
    investor_name: str = ""
    commitment: Decimal = field(default_factory=_zero)
    ownership_percent: Optional[Decimal] = None


@dataclass
class OwnershipShare:
    investor_id: str
    ownership_percent: Decimal


# ============================================================
# WATERFALL LADDER
# ============================================================

@dataclass
class WaterfallTier:
    """
    One rung of a structure's distribution ladder

    lp_share_percent + gp_share_percent must equal 100.  At most one of
    threshold_amount (cumulative dollar cap) and threshold_irr (hurdle,
    percent) is normally set.
    """
    structure_id: Optional[int]
    tier_number: int
    tier_name: str
    lp_share_percent: Decimal
    gp_share_percent: Decimal
    threshold_amount: Optional[Decimal] = None
    threshold_irr: Optional[Decimal] = None
    description: str = ""
    is_active: bool = True
    id: Optional[int] = None
    created_by: Optional[str] = None

    @property
    def lp_fraction(self) -> Decimal:
        return Decimal(self.lp_share_percent) / 100

    @property
    def gp_fraction(self) -> Decimal:
        return Decimal(self.gp_share_percent) / 100


@dataclass
class TierValidation:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


# ============================================================
# INVESTMENTS
# ============================================================

@dataclass
class Investment:
    """A structure's position in a portfolio company or loan"""
    id: Optional[int]
    structure_id: int
    investment_name: str
    investment_type: str = "EQUITY"
    investment_date: Optional[date] = None
    exit_date: Optional[date] = None
    status: str = INVESTMENT_ACTIVE
    # Equity
    equity_invested: Decimal = field(default_factory=_zero)
    equity_current_value: Decimal = field(default_factory=_zero)
    equity_exit_value: Optional[Decimal] = None
    equity_realized_gain: Optional[Decimal] = None
    # Debt
    principal_provided: Decimal = field(default_factory=_zero)
    interest_rate: Optional[Decimal] = None
    principal_repaid: Decimal = field(default_factory=_zero)
    interest_received: Decimal = field(default_factory=_zero)
    outstanding_principal: Decimal = field(default_factory=_zero)
    # Performance
    irr_percent: Optional[Decimal] = None
    moic: Optional[Decimal] = None
    total_returns: Decimal = field(default_factory=_zero)


# ============================================================
# CAPITAL CALLS
# ============================================================

@dataclass
class CapitalCall:
    """
    Request for capital from a structure's investors

    Invariant: total_paid_amount + total_unpaid_amount == total_call_amount
    """
    id: Optional[int]
    structure_id: int
    call_number: str
    call_date: date
    due_date: date
    total_call_amount: Decimal
    total_paid_amount: Decimal = field(default_factory=_zero)
    total_unpaid_amount: Optional[Decimal] = None
    status: str = CALL_DRAFT
    sent_date: Optional[date] = None
    investment_id: Optional[int] = None
    purpose: str = ""
    notes: str = ""
    created_by: Optional[str] = None

    def __post_init__(self):
        if self.total_unpaid_amount is None:
            self.total_unpaid_amount = self.total_call_amount - self.total_paid_amount


@dataclass
class CapitalCallAllocation:
    capital_call_id: int
    investor_id: str
    ownership_percent: Decimal
    allocated_amount: Decimal
    paid_amount: Decimal = field(default_factory=_zero)
    remaining_amount: Optional[Decimal] = None
    status: str = ALLOCATION_PENDING
    due_date: Optional[date] = None
    id: Optional[int] = None

    def __post_init__(self):
        if self.remaining_amount is None:
            self.remaining_amount = self.allocated_amount - self.paid_amount


# ============================================================
# DISTRIBUTIONS
# ============================================================

@dataclass
class Distribution:
    """
    Cash distribution event for a structure

    Created as Draft with all tier amounts zero; the waterfall fills
    tier1..tier4 exactly once.
    """
    id: Optional[int]
    structure_id: int
    distribution_number: str
    distribution_date: date
    total_amount: Decimal
    status: str = DISTRIBUTION_DRAFT
    investment_id: Optional[int] = None
    source: str = ""
    notes: str = ""
    source_equity_gain: Decimal = field(default_factory=_zero)
    source_debt_interest: Decimal = field(default_factory=_zero)
    source_debt_principal: Decimal = field(default_factory=_zero)
    source_other: Decimal = field(default_factory=_zero)
    waterfall_applied: bool = False
    tier1_amount: Decimal = field(default_factory=_zero)
    tier2_amount: Decimal = field(default_factory=_zero)
    tier3_amount: Decimal = field(default_factory=_zero)
    tier4_amount: Decimal = field(default_factory=_zero)
    lp_total_amount: Decimal = field(default_factory=_zero)
    gp_total_amount: Decimal = field(default_factory=_zero)
    management_fee_amount: Decimal = field(default_factory=_zero)
    created_by: Optional[str] = None

    @property
    def tier_amounts(self) -> List[Decimal]:
        return [self.tier1_amount, self.tier2_amount, self.tier3_amount, self.tier4_amount]


@dataclass
class DistributionAllocation:
    distribution_id: int
    investor_id: str
    ownership_percent: Decimal
    allocated_amount: Decimal
    paid_amount: Decimal = field(default_factory=_zero)
    remaining_amount: Optional[Decimal] = None
    status: str = ALLOCATION_PENDING
    payment_date: Optional[date] = None
    id: Optional[int] = None

    def __post_init__(self):
        if self.remaining_amount is None:
            self.remaining_amount = self.allocated_amount - self.paid_amount


# ============================================================
# WATERFALL ENGINE STATE / RESULT
# ============================================================

@dataclass
class WaterfallState:
    """
    Cumulative position of a structure before a waterfall run

    Tracks:
    - Dated LP contributions (paid capital) for hurdle math
    - Dated LP receipts from earlier distributions
    - Per-tier cumulative fills and the GP slice of each

    Cashflows are stored as positive amounts; direction is implied by
    the list they live in.
    """
    contributions: List[Tuple[date, Decimal]] = field(default_factory=list)
    lp_distributions: List[Tuple[date, Decimal]] = field(default_factory=list)
    tier_paid: Dict[int, Decimal] = field(default_factory=dict)
    tier_gp_paid: Dict[int, Decimal] = field(default_factory=dict)

    @property
    def capital_contributed(self) -> Decimal:
        return sum((a for _, a in self.contributions), Decimal("0.00"))

    @property
    def capital_returned(self) -> Decimal:
        return self.paid_in_tier(1)

    @property
    def carry_paid(self) -> Decimal:
        return self.gp_paid_in_tier(4)

    def paid_in_tier(self, n: int) -> Decimal:
        return self.tier_paid.get(n, Decimal("0.00"))

    def gp_paid_in_tier(self, n: int) -> Decimal:
        return self.tier_gp_paid.get(n, Decimal("0.00"))

    def lp_cashflows(self) -> List[Tuple[date, float]]:
        """LP cashflows in XIRR convention (contributions negative)"""
        cfs = [(d, -float(a)) for d, a in self.contributions]
        cfs += [(d, float(a)) for d, a in self.lp_distributions]
        return sorted(cfs, key=lambda t: t[0])


@dataclass
class TierFill:
    tier_number: int
    tier_name: str
    capacity: Optional[Decimal]
    amount: Decimal
    lp_amount: Decimal
    gp_amount: Decimal


@dataclass
class WaterfallResult:
    """Output of one waterfall pass over a distribution"""
    total_amount: Decimal
    management_fee: Decimal
    fills: List[TierFill] = field(default_factory=list)

    @property
    def net_amount(self) -> Decimal:
        return self.total_amount - self.management_fee

    @property
    def tier_amounts(self) -> List[Decimal]:
        amounts = {f.tier_number: f.amount for f in self.fills}
        return [amounts.get(n, ZERO) for n in TIER_NUMBERS]

    @property
    def lp_total(self) -> Decimal:
        return sum((f.lp_amount for f in self.fills), ZERO)

    @property
    def gp_total(self) -> Decimal:
        return sum((f.gp_amount for f in self.fills), ZERO)

    def as_dict(self) -> dict:
        """Caller-facing shape"""
        return {
            "tierAmounts": [float(a) for a in self.tier_amounts],
            "lpTotal": float(self.lp_total),
            "gpTotal": float(self.gp_total),
            "managementFee": float(self.management_fee),
        }
