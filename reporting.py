"""
reporting.py
Summary tables for capital calls, distributions, waterfalls and the portfolio
With Streamlit display helpers
"""

import numpy as np
import pandas as pd
import streamlit as st
from dataclasses import asdict
from io import BytesIO
from typing import List, Optional

from config import CALL_STATUSES
from models import (CapitalCall, Distribution, Investment, WaterfallResult,
                    WaterfallTier)

MONEY_COLS_CALLS = ["total_call_amount", "total_paid_amount", "total_unpaid_amount"]
MONEY_COLS_DISTS = ["total_amount", "tier1_amount", "tier2_amount", "tier3_amount", "tier4_amount",
                    "lp_total_amount", "gp_total_amount", "management_fee_amount"]


def _frame(records: List, money_cols: List[str]) -> pd.DataFrame:
    """Dataclass records -> DataFrame with Decimal money columns as float"""
    df = pd.DataFrame([asdict(r) for r in records])
    for c in money_cols:
        if c in df.columns:
            df[c] = df[c].astype(float)
    return df


# ============================================================
# CAPITAL CALLS
# ============================================================

def capital_calls_frame(calls: List[CapitalCall]) -> pd.DataFrame:
    if not calls:
        return pd.DataFrame(columns=["id", "call_number", "call_date", "due_date", "status"] + MONEY_COLS_CALLS)
    return _frame(calls, MONEY_COLS_CALLS)


def capital_call_summary(calls: List[CapitalCall]) -> dict:
    """
    Totals across a set of capital calls

    Returns:
        totalCalls, totalCalled, totalPaid, totalUnpaid, and byStatus
        (count per status, every status present)
    """
    df = capital_calls_frame(calls)
    by_status = {s: 0 for s in CALL_STATUSES}
    if not df.empty:
        by_status.update(df.groupby("status").size().astype(int).to_dict())

    return {
        "totalCalls": int(len(df)),
        "totalCalled": round(float(df["total_call_amount"].sum()), 2) if not df.empty else 0.0,
        "totalPaid": round(float(df["total_paid_amount"].sum()), 2) if not df.empty else 0.0,
        "totalUnpaid": round(float(df["total_unpaid_amount"].sum()), 2) if not df.empty else 0.0,
        "byStatus": by_status,
    }


# ============================================================
# DISTRIBUTIONS
# ============================================================

def distributions_frame(dists: List[Distribution]) -> pd.DataFrame:
    if not dists:
        return pd.DataFrame(columns=["id", "distribution_number", "distribution_date", "status",
                                     "waterfall_applied"] + MONEY_COLS_DISTS)
    return _frame(dists, MONEY_COLS_DISTS)


def distribution_summary(dists: List[Distribution]) -> dict:
    df = distributions_frame(dists)
    if df.empty:
        return {
            "totalDistributions": 0,
            "totalAmount": 0.0,
            "lpTotal": 0.0,
            "gpTotal": 0.0,
            "managementFees": 0.0,
            "waterfallApplied": 0,
        }
    return {
        "totalDistributions": int(len(df)),
        "totalAmount": round(float(df["total_amount"].sum()), 2),
        "lpTotal": round(float(df["lp_total_amount"].sum()), 2),
        "gpTotal": round(float(df["gp_total_amount"].sum()), 2),
        "managementFees": round(float(df["management_fee_amount"].sum()), 2),
        "waterfallApplied": int(df["waterfall_applied"].astype(bool).sum()),
    }


def waterfall_frame(result: WaterfallResult) -> pd.DataFrame:
    """One row per tier: capacity, amount and the LP/GP split"""
    rows = [
        {
            "Tier": f.tier_number,
            "Name": f.tier_name,
            "Capacity": np.nan if f.capacity is None else float(f.capacity),
            "Amount": float(f.amount),
            "LP": float(f.lp_amount),
            "GP": float(f.gp_amount),
        }
        for f in result.fills
    ]
    return pd.DataFrame(rows, columns=["Tier", "Name", "Capacity", "Amount", "LP", "GP"])


def tiers_frame(tiers: List[WaterfallTier]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "Tier": t.tier_number,
                "Name": t.tier_name,
                "LP %": float(t.lp_share_percent),
                "GP %": float(t.gp_share_percent),
                "Threshold $": np.nan if t.threshold_amount is None else float(t.threshold_amount),
                "Hurdle %": np.nan if t.threshold_irr is None else float(t.threshold_irr),
                "Active": t.is_active,
            }
            for t in sorted(tiers, key=lambda t: t.tier_number)
        ],
        columns=["Tier", "Name", "LP %", "GP %", "Threshold $", "Hurdle %", "Active"],
    )


def allocations_frame(allocations: List) -> pd.DataFrame:
    if not allocations:
        return pd.DataFrame(columns=["investor_id", "ownership_percent", "allocated_amount",
                                     "paid_amount", "remaining_amount", "status"])
    df = _frame(allocations, ["allocated_amount", "paid_amount", "remaining_amount"])
    df["ownership_percent"] = df["ownership_percent"].astype(float)
    return df


# ============================================================
# PORTFOLIO
# ============================================================

def portfolio_summary(investments: List[Investment]) -> dict:
    """
    Portfolio roll-up

    weightedIrr is the IRR weighted by capital deployed (equity + principal)
    across investments that have an IRR.
    """
    if not investments:
        return {"totalInvestments": 0, "byType": {}, "byStatus": {}, "capitalDeployed": 0.0,
                "totalReturns": 0.0, "weightedIrr": None}

    df = pd.DataFrame(
        {
            "type": [i.investment_type for i in investments],
            "status": [i.status for i in investments],
            "deployed": [float(i.equity_invested) + float(i.principal_provided) for i in investments],
            "returns": [float(i.total_returns) for i in investments],
            "irr": [np.nan if i.irr_percent is None else float(i.irr_percent) for i in investments],
        }
    )

    with_irr = df[df["irr"].notna() & (df["deployed"] > 0)]
    weighted_irr: Optional[float] = None
    if not with_irr.empty:
        weighted_irr = float(np.average(with_irr["irr"], weights=with_irr["deployed"]))

    return {
        "totalInvestments": int(len(df)),
        "byType": df.groupby("type").size().astype(int).to_dict(),
        "byStatus": df.groupby("status").size().astype(int).to_dict(),
        "capitalDeployed": round(float(df["deployed"].sum()), 2),
        "totalReturns": round(float(df["returns"].sum()), 2),
        "weightedIrr": weighted_irr,
    }


# ============================================================
# EXCEL EXPORT
# ============================================================

WORKBOOK_MONEY_COLS = set(MONEY_COLS_CALLS) | set(MONEY_COLS_DISTS)


def _write_sheet(ws, df: pd.DataFrame) -> None:
    from openpyxl.styles import Alignment, Font, PatternFill

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")

    cols = list(df.columns)
    for col_idx, col_name in enumerate(cols, start=1):
        cell = ws.cell(row=1, column=col_idx, value=col_name)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal="center")

    for row_idx, (_, row) in enumerate(df.iterrows(), start=2):
        for col_idx, col_name in enumerate(cols, start=1):
            val = row[col_name]
            cell = ws.cell(row=row_idx, column=col_idx)
            if col_name in WORKBOOK_MONEY_COLS:
                cell.value = float(val) if pd.notna(val) else 0.0
                cell.number_format = '$#,##0.00'
            elif val is None or (isinstance(val, float) and np.isnan(val)):
                cell.value = None
            elif isinstance(val, (np.integer, np.floating, np.bool_)):
                cell.value = val.item()
            elif isinstance(val, (int, float, bool, str)):
                cell.value = val
            else:
                cell.value = str(val)

    # Auto-width
    for col_idx, col_name in enumerate(cols, start=1):
        max_len = len(str(col_name))
        for row_idx in range(2, len(df) + 2):
            cell_val = ws.cell(row=row_idx, column=col_idx).value
            if cell_val is not None:
                max_len = max(max_len, len(str(cell_val)))
        ws.column_dimensions[ws.cell(row=1, column=col_idx).column_letter].width = min(max_len + 4, 30)


def ledger_workbook(calls: List[CapitalCall], dists: List[Distribution]) -> bytes:
    """
    Capital calls and distributions as a formatted Excel workbook

    Returns:
        Bytes suitable for st.download_button.
    """
    from openpyxl import Workbook

    wb = Workbook()
    ws = wb.active
    ws.title = "Capital Calls"
    _write_sheet(ws, capital_calls_frame(calls))
    _write_sheet(wb.create_sheet("Distributions"), distributions_frame(dists))

    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


# ============================================================
# DISPLAY
# ============================================================

def show_waterfall_table(title: str, result: WaterfallResult):
    """Display a waterfall result in Streamlit"""
    st.subheader(title)

    df = waterfall_frame(result)
    if df.empty:
        st.info("No tiers to display.")
        return

    st.dataframe(
        df,
        use_container_width=True,
        hide_index=True,
        column_config={
            "Tier": st.column_config.NumberColumn(format="%d"),
            "Capacity": st.column_config.NumberColumn(format="$%,.2f"),
            "Amount": st.column_config.NumberColumn(format="$%,.2f"),
            "LP": st.column_config.NumberColumn(format="$%,.2f"),
            "GP": st.column_config.NumberColumn(format="$%,.2f"),
        },
    )
    st.caption(
        f"Management fee {result.management_fee:,.2f} · "
        f"LP total {result.lp_total:,.2f} · GP total {result.gp_total:,.2f}"
    )
