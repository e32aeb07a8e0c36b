"""
config.py
Configuration and constants for the fund ledger and waterfall engine
"""

import os
from decimal import Decimal

# ============================================================
# STORAGE
# ============================================================
DB_PATH = os.environ.get("FUND_LEDGER_DB", "fund_ledger.db")

# ============================================================
# DEFAULT FUND TERMS (percent, 0-100)
# ============================================================
DEFAULT_HURDLE_RATE = 8
DEFAULT_CARRIED_INTEREST = 20
DEFAULT_MANAGEMENT_FEE = 2
DEFAULT_WATERFALL_TYPE = "American"
DEFAULT_CURRENCY = "USD"

# Capital calls are due 30 days after the call date unless stated
DEFAULT_DUE_DAYS = 30

# Structures nest at most this deep (1 = top level)
MAX_HIERARCHY_LEVEL = 5

# ============================================================
# NUMERIC CONVENTIONS
# ============================================================
MONEY_QUANTUM = Decimal("0.01")
HUNDRED = Decimal("100")

# Ownership percentages must sum to 100 within this tolerance
OWNERSHIP_TOLERANCE = Decimal("0.01")

# Act/365 day count, same convention as XIRR
DAYS_PER_YEAR = 365.0

# ============================================================
# VOCABULARIES
# ============================================================
STRUCTURE_TYPES = ("Fund", "SA/LLC", "Fideicomiso", "Private Debt")
INVESTMENT_TYPES = ("EQUITY", "DEBT", "MIXED")

TIER_NUMBERS = (1, 2, 3, 4)
TIER_RETURN_OF_CAPITAL = 1
TIER_PREFERRED_RETURN = 2
TIER_CATCH_UP = 3
TIER_CARRIED_INTEREST = 4

# Capital call status machine: Draft -> Sent -> Partially Paid -> Paid
CALL_DRAFT = "Draft"
CALL_SENT = "Sent"
CALL_PARTIALLY_PAID = "Partially Paid"
CALL_PAID = "Paid"
CALL_STATUSES = (CALL_DRAFT, CALL_SENT, CALL_PARTIALLY_PAID, CALL_PAID)

DISTRIBUTION_DRAFT = "Draft"
DISTRIBUTION_PAID = "Paid"

ALLOCATION_PENDING = "Pending"

INVESTMENT_ACTIVE = "Active"
INVESTMENT_EXITED = "Exited"

# Role ids as stored on user records
ROLE_ROOT = 0
ROLE_ADMIN = 1
ROLE_SUPPORT = 2
ROLE_INVESTOR = 3
ROLE_GUEST = 4

ROLE_NAMES = {
    ROLE_ROOT: "Root",
    ROLE_ADMIN: "Admin",
    ROLE_SUPPORT: "Support",
    ROLE_INVESTOR: "Investor",
    ROLE_GUEST: "Guest",
}


def tier_role(tier_number: int) -> str:
    """Map a tier number to the role it plays in the default ladder.

    Returns one of "return_of_capital", "preferred_return", "catch_up",
    "carried_interest".  Unknown numbers map to "carried_interest" so a
    misnumbered tier never silently caps the waterfall.
    """
    return {
        TIER_RETURN_OF_CAPITAL: "return_of_capital",
        TIER_PREFERRED_RETURN: "preferred_return",
        TIER_CATCH_UP: "catch_up",
    }.get(tier_number, "carried_interest")
