"""
balances.py
Running-balance updates for structures, investments and distributions

Pure functions that turn a lifecycle event into the column changes the
store writes inside one transaction.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from config import DISTRIBUTION_DRAFT, INVESTMENT_EXITED
from errors import ConflictError, ValidationError
from models import Distribution, Investment, Structure, WaterfallResult
from utils import as_date, to_money

logger = logging.getLogger(__name__)

ACCUMULATORS = ("total_called", "total_distributed", "total_invested")
SOURCE_FIELDS = ("source_equity_gain", "source_debt_interest", "source_debt_principal", "source_other")
EDITABLE_DISTRIBUTION_FIELDS = ("distribution_number", "distribution_date", "total_amount",
                                "investment_id", "source", "notes") + SOURCE_FIELDS


def distribution_waterfall_fields(result: WaterfallResult) -> Dict[str, Decimal]:
    """Distribution columns written when a waterfall is applied"""
    t1, t2, t3, t4 = result.tier_amounts
    return {
        "tier1_amount": t1,
        "tier2_amount": t2,
        "tier3_amount": t3,
        "tier4_amount": t4,
        "lp_total_amount": result.lp_total,
        "gp_total_amount": result.gp_total,
        "management_fee_amount": result.management_fee,
    }


def investment_distribution_deltas(dist: Distribution, inv: Investment) -> Dict[str, Decimal]:
    """
    Investment running totals after a distribution sourced from it

    total_returns grows by the whole distribution; debt principal
    repaid/outstanding and interest received follow the source breakdown.
    Outstanding principal never drops below zero.
    """
    principal = to_money(dist.source_debt_principal)
    interest = to_money(dist.source_debt_interest)

    outstanding = inv.outstanding_principal - principal
    if outstanding < 0:
        logger.warning(
            f"Distribution {dist.id} repays {principal} against {inv.outstanding_principal} outstanding"
        )
        outstanding = Decimal("0.00")

    return {
        "total_returns": inv.total_returns + to_money(dist.total_amount),
        "principal_repaid": inv.principal_repaid + principal,
        "interest_received": inv.interest_received + interest,
        "outstanding_principal": outstanding,
    }


def check_financials_update(structure: Structure, updates: Dict[str, object]) -> Dict[str, Decimal]:
    """
    Validate a manual financials update

    Only the accumulators may be set and none may decrease.

    Raises:
        ValidationError: listing every offending field
    """
    errors = []
    clean = {}
    for key, value in updates.items():
        if value is None:
            continue
        if key not in ACCUMULATORS:
            errors.append(f"{key} is not an updatable financial field")
            continue
        new_value = to_money(value)
        current = getattr(structure, key)
        if new_value < current:
            errors.append(f"{key} cannot decrease ({current} -> {new_value})")
        clean[key] = new_value

    if errors:
        raise ValidationError("Invalid financials update", errors)
    return clean


def exit_fields(inv: Investment, exit_value=None, exit_date: Optional[date] = None) -> Dict[str, object]:
    """
    Columns written when an investment is marked exited

    Realized gain = exit value - equity invested, when the exit value is
    known and equity was invested.
    """
    fields: Dict[str, object] = {
        "status": INVESTMENT_EXITED,
        "exit_date": exit_date or date.today(),
    }
    if exit_value is not None:
        value = to_money(exit_value)
        fields["equity_exit_value"] = value
        if inv.equity_invested:
            fields["equity_realized_gain"] = value - inv.equity_invested
    return fields


def validate_distribution(dist: Distribution) -> List[str]:
    """Issues with a distribution's amount, number and source breakdown"""
    errors = []
    if to_money(dist.total_amount) <= 0:
        errors.append("Distribution amount must be positive")
    if not str(dist.distribution_number or "").strip():
        errors.append("Distribution number is required")
    errors.extend(f"{k} must not be negative" for k in SOURCE_FIELDS if to_money(getattr(dist, k)) < 0)
    return errors


def merge_distribution_update(dist: Distribution, updates: dict) -> Distribution:
    """
    Apply an edit to a Draft distribution whose waterfall is not applied

    Raises:
        ConflictError: waterfall applied or distribution already paid
        ValidationError: unknown fields or an invalid result
    """
    if dist.waterfall_applied or dist.status != DISTRIBUTION_DRAFT:
        raise ConflictError(f"Distribution {dist.id} can no longer be edited")

    unknown = [k for k in updates if k not in EDITABLE_DISTRIBUTION_FIELDS]
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {unknown}")

    values = dict(updates)
    for k in ("total_amount",) + SOURCE_FIELDS:
        if k in values:
            values[k] = to_money(values[k])
    if values.get("distribution_date") is not None:
        values["distribution_date"] = as_date(values["distribution_date"])
    if "distribution_number" in values:
        values["distribution_number"] = str(values["distribution_number"] or "").strip()

    merged = Distribution(**{**dist.__dict__, **values})
    errors = validate_distribution(merged)
    if errors:
        raise ValidationError("Invalid distribution", errors)
    return merged
