"""
capital_calls.py
Capital call construction, validation and payment status rules

Status machine:
    Draft -> Sent -> Partially Paid -> Paid
Partially Paid is entered only while 0 < paid < called.  A Draft call can
receive payments directly (it skips Sent).
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from config import (CALL_DRAFT, CALL_PAID, CALL_PARTIALLY_PAID, CALL_SENT,
                    DEFAULT_DUE_DAYS)
from errors import ConflictError, ValidationError
from models import CapitalCall
from utils import add_days, as_date, to_money

logger = logging.getLogger(__name__)


def validate_capital_call(call: CapitalCall) -> List[str]:
    """
    Validate a capital call and return list of issues

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    if call.structure_id is None:
        errors.append("Structure ID is required")
    if not str(call.call_number or "").strip():
        errors.append("Call number is required")
    if call.total_call_amount is None or to_money(call.total_call_amount) <= 0:
        errors.append("Total call amount must be positive")
    if call.call_date and call.due_date and call.due_date < call.call_date:
        errors.append("Due date must not precede call date")
    if call.status not in (CALL_DRAFT, CALL_SENT, CALL_PARTIALLY_PAID, CALL_PAID):
        errors.append(f"Unknown status: {call.status}")

    return errors


def new_capital_call(
    structure_id: int,
    call_number,
    total_call_amount,
    call_date: Optional[date] = None,
    due_date: Optional[date] = None,
    investment_id: Optional[int] = None,
    purpose: str = "",
    notes: str = "",
    created_by: Optional[str] = None,
) -> CapitalCall:
    """
    Build a Draft capital call with nothing paid

    Defaults: call_date today, due_date DEFAULT_DUE_DAYS after call_date.

    Raises:
        ValidationError: if the call is malformed
    """
    call_day = as_date(call_date) if call_date is not None else date.today()
    due_day = as_date(due_date) if due_date is not None else add_days(call_day, DEFAULT_DUE_DAYS)
    amount = to_money(total_call_amount) if total_call_amount is not None else None

    call = CapitalCall(
        id=None,
        structure_id=structure_id,
        call_number=str(call_number).strip() if call_number is not None else "",
        call_date=call_day,
        due_date=due_day,
        total_call_amount=amount if amount is not None else Decimal("0.00"),
        status=CALL_DRAFT,
        investment_id=investment_id,
        purpose=(purpose or "").strip(),
        notes=(notes or "").strip(),
        created_by=created_by,
    )

    errors = validate_capital_call(call)
    if errors:
        raise ValidationError("Invalid capital call", errors)
    return call


def check_can_send(call: CapitalCall) -> None:
    """Only Draft calls can be sent"""
    if call.status != CALL_DRAFT:
        raise ConflictError(f"Capital call {call.id} is {call.status}; only Draft calls can be sent")


def apply_payment(call: CapitalCall, amount) -> Tuple[Decimal, Decimal, str]:
    """
    Totals and status after recording a payment against a call

    Paid once nothing is unpaid; otherwise Partially Paid when the call
    was Draft or Sent.  Overpayment is rejected so paid + unpaid always
    equals the call amount.

    Returns:
        (total_paid, total_unpaid, status)
    """
    pay = to_money(amount)
    if pay <= 0:
        raise ValidationError(f"Payment amount must be positive: {pay}")
    if call.status == CALL_PAID:
        raise ConflictError(f"Capital call {call.id} is already paid")

    unpaid_before = call.total_call_amount - call.total_paid_amount
    if pay > unpaid_before:
        raise ValidationError(f"Payment {pay} exceeds unpaid amount {unpaid_before}")

    total_paid = call.total_paid_amount + pay
    total_unpaid = call.total_call_amount - total_paid

    status = call.status
    if total_unpaid <= 0:
        status = CALL_PAID
    elif total_paid > 0 and call.status in (CALL_DRAFT, CALL_SENT):
        status = CALL_PARTIALLY_PAID

    return total_paid, total_unpaid, status


def counts_toward_called(call: CapitalCall) -> bool:
    """True once the call amount has been added to the structure's total_called"""
    return call.status != CALL_DRAFT


def contributions_from_payments(rows: Iterable[dict]) -> List[Tuple[date, Decimal]]:
    """Dated contributions from capital_call_payments rows"""
    out = [(as_date(r["payment_date"]), to_money(r["amount"])) for r in rows]
    return sorted(out, key=lambda t: t[0])


EDITABLE_CALL_FIELDS = ("call_number", "call_date", "due_date", "total_call_amount",
                        "investment_id", "purpose", "notes")


def merge_call_update(call: CapitalCall, updates: dict) -> CapitalCall:
    """
    Apply an edit to a Draft call with nothing paid and re-validate it

    Raises:
        ConflictError: the call was sent or has payments
        ValidationError: unknown fields or an invalid result
    """
    if call.status != CALL_DRAFT or call.total_paid_amount > 0:
        raise ConflictError(f"Capital call {call.id} is {call.status}; only unpaid Draft calls can be edited")

    unknown = [k for k in updates if k not in EDITABLE_CALL_FIELDS]
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {unknown}")

    values = dict(updates)
    if values.get("total_call_amount") is not None:
        values["total_call_amount"] = to_money(values["total_call_amount"])
    for k in ("call_date", "due_date"):
        if values.get(k) is not None:
            values[k] = as_date(values[k])
    if "call_number" in values:
        values["call_number"] = str(values["call_number"] or "").strip()

    merged = CapitalCall(**{**call.__dict__, **values, "total_unpaid_amount": None})
    errors = validate_capital_call(merged)
    if errors:
        raise ValidationError("Invalid capital call", errors)
    return merged
