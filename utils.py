"""
utils.py
Utility functions for dates, money rounding and display formatting
"""

from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
import pandas as pd

from config import MONEY_QUANTUM


def as_date(x) -> date:
    """Convert various formats to date object"""
    if isinstance(x, date) and not isinstance(x, pd.Timestamp):
        return x.date() if hasattr(x, "hour") else x
    return pd.to_datetime(x).date()


def add_days(d: date, days: int) -> date:
    return d + timedelta(days=days)


# ============================================================
# MONEY
# ============================================================

def to_decimal(x) -> Decimal:
    """Coerce int/float/str/Decimal to Decimal without binary float noise"""
    if x is None:
        return Decimal("0")
    if isinstance(x, Decimal):
        return x
    if isinstance(x, float):
        return Decimal(repr(x))
    return Decimal(str(x))


def to_money(x) -> Decimal:
    """Round to currency precision (half-up)"""
    return to_decimal(x).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def to_cents(x) -> int:
    """Money -> integer cents for storage"""
    return int(to_money(x) * 100)


def from_cents(c: Optional[int]) -> Decimal:
    if c is None:
        return Decimal("0.00")
    return (Decimal(int(c)) / 100).quantize(MONEY_QUANTUM)


def to_percent(x) -> Optional[Decimal]:
    """Percent (0-100) as Decimal; None passes through"""
    if x is None or (isinstance(x, float) and pd.isna(x)):
        return None
    return to_decimal(x)


# ============================================================
# DISPLAY
# ============================================================

def fmt_money(x) -> str:
    """Format money with commas and cents"""
    try:
        if x is None:
            return "—"
        return f"${to_money(x):,.2f}"
    except Exception:
        return "—"

