# app.py
# Fund Ledger Console
# - Structures, investors and the four-tier waterfall ladder
# - Capital calls: draft, send, record payments, allocate to investors
# - Distributions: draft, preview/apply waterfall, allocate LP pool
# - Storage: local sqlite file (FUND_LEDGER_DB)

import logging
from datetime import date

import altair as alt
import pandas as pd
import streamlit as st

from allocations import allocations_as_dict
from config import DB_PATH, STRUCTURE_TYPES
from database import LedgerStore
from errors import WaterfallError
from reporting import (allocations_frame, capital_call_summary, capital_calls_frame,
                       distribution_summary, distributions_frame, ledger_workbook,
                       portfolio_summary, show_waterfall_table, tiers_frame, waterfall_frame)
from services import FundService
from utils import fmt_money

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


# ============================================================
# COLOUR PALETTE
# ============================================================
CLR_DARK = '#1F4E79'
CLR_ACCENT = '#ED7D31'


# ============================================================
# STORE / SERVICE
# ============================================================
@st.cache_resource
def get_service(db_path: str) -> FundService:
    store = LedgerStore(db_path)
    store.init_database()
    return FundService(store)


def tier_chart(result) -> alt.Chart:
    """Stacked LP/GP bars per tier"""
    df = waterfall_frame(result)
    long_df = df.melt(id_vars=['Tier', 'Name'], value_vars=['LP', 'GP'], var_name='Party', value_name='Amount')
    color_scale = alt.Scale(domain=['LP', 'GP'], range=[CLR_DARK, CLR_ACCENT])
    return alt.Chart(long_df).mark_bar().encode(
        x=alt.X('Name:N', sort=list(df['Name']), title='Tier'),
        y=alt.Y('Amount:Q', title='Amount ($)', axis=alt.Axis(format=',.0f')),
        color=alt.Color('Party:N', scale=color_scale, legend=alt.Legend(orient='bottom', direction='horizontal')),
        tooltip=['Name', 'Party', alt.Tooltip('Amount:Q', format=',.2f')],
    ).properties(height=320)


def run_action(fn, *args, **kwargs):
    """Run a service call, reporting ledger errors in the page"""
    try:
        return fn(*args, **kwargs)
    except WaterfallError as e:
        logger.warning(f"{type(e).__name__}: {e}")
        st.error(f"{type(e).__name__}: {e}")
        for detail in getattr(e, 'errors', [])[1:]:
            st.caption(detail)
        return None


st.set_page_config(page_title="Fund Ledger", layout="wide")
st.title("Fund Ledger & Waterfall")

svc = get_service(DB_PATH)


# ============================================================
# SIDEBAR: STRUCTURES
# ============================================================
with st.sidebar:
    st.header("Structures")
    with st.form("new_structure"):
        name = st.text_input("Name")
        stype = st.selectbox("Type", STRUCTURE_TYPES)
        commitment = st.number_input("Total commitment", min_value=0.0, step=100000.0)
        hurdle = st.number_input("Hurdle rate %", min_value=0.0, max_value=100.0, value=8.0)
        carry = st.number_input("Carried interest %", min_value=0.0, max_value=100.0, value=20.0)
        fee = st.number_input("Management fee %", min_value=0.0, max_value=100.0, value=2.0)
        inception = st.date_input("Inception date", value=date.today())
        if st.form_submit_button("Create structure"):
            created = run_action(
                svc.create_structure, name, stype, total_commitment=commitment,
                hurdle_rate=hurdle, carried_interest=carry, management_fee=fee, inception_date=inception,
            )
            if created:
                st.success(f"Created {created.name}")

structures = svc.list_structures()
if not structures:
    st.info("Create a structure to get started.")
    st.stop()

labels = {f"{s.id} · {s.name}": s.id for s in structures}
structure_id = labels[st.selectbox("Structure", list(labels))]
structure = svc.get_structure(structure_id)

c1, c2, c3, c4 = st.columns(4)
c1.metric("Commitment", fmt_money(structure.total_commitment))
c2.metric("Called", fmt_money(structure.total_called))
c3.metric("Distributed", fmt_money(structure.total_distributed))
c4.metric("Hurdle / Carry", f"{structure.hurdle_rate}% / {structure.carried_interest}%")

tab_inv, tab_ladder, tab_calls, tab_dists = st.tabs(["Investors", "Waterfall Ladder", "Capital Calls", "Distributions"])


# ============================================================
# INVESTORS
# ============================================================
with tab_inv:
    with st.form("add_investor"):
        inv_id = st.text_input("Investor ID")
        inv_name = st.text_input("Investor name")
        inv_commit = st.number_input("Commitment", min_value=0.0, step=10000.0)
        if st.form_submit_button("Add investor"):
            run_action(svc.add_investor, structure_id, inv_id, inv_name, commitment=inv_commit)

    shares = run_action(svc.get_ownership, structure_id) or []
    st.dataframe(
        pd.DataFrame([{"Investor": s.investor_id, "Ownership %": float(s.ownership_percent)} for s in shares]),
        use_container_width=True,
        hide_index=True,
    )

    port = portfolio_summary(svc.list_investments(structure_id))
    irr_txt = "n/a" if port["weightedIrr"] is None else f"{port['weightedIrr']:.2f}%"
    st.caption(
        f"{port['totalInvestments']} investments · deployed {fmt_money(port['capitalDeployed'])} · "
        f"returns {fmt_money(port['totalReturns'])} · weighted IRR {irr_txt}"
    )


# ============================================================
# LADDER
# ============================================================
with tab_ladder:
    tiers = svc.get_active_tiers(structure_id)
    if tiers:
        st.dataframe(tiers_frame(tiers), use_container_width=True, hide_index=True)
    else:
        st.warning("No waterfall ladder configured.")
        if st.button("Create default ladder"):
            run_action(svc.create_default_tiers, structure_id)
            st.rerun()


# ============================================================
# CAPITAL CALLS
# ============================================================
with tab_calls:
    calls = svc.store.list_capital_calls(structure_id)
    summary = capital_call_summary(calls)
    st.caption(
        f"{summary['totalCalls']} calls · called {fmt_money(summary['totalCalled'])} · "
        f"paid {fmt_money(summary['totalPaid'])} · unpaid {fmt_money(summary['totalUnpaid'])}"
    )

    with st.form("new_call"):
        call_no = st.text_input("Call number")
        call_amt = st.number_input("Amount", min_value=0.0, step=10000.0)
        call_day = st.date_input("Call date", value=date.today())
        allocate = st.checkbox("Create investor allocations", value=True)
        if st.form_submit_button("Create capital call"):
            run_action(svc.create_capital_call, structure_id, call_no, call_amt,
                       call_date=call_day, create_allocations=allocate)

    if calls:
        st.dataframe(capital_calls_frame(calls), use_container_width=True, hide_index=True)
        call_ids = [c.id for c in calls]
        sel_call = st.selectbox("Capital call", call_ids)
        p1, p2, p3 = st.columns(3)
        pay_amt = p2.number_input("Payment", min_value=0.0, step=1000.0)
        pay_day = p3.date_input("Payment date", value=date.today())
        if p1.button("Send"):
            run_action(svc.send_capital_call, sel_call)
        if p2.button("Record payment"):
            run_action(svc.record_payment, sel_call, pay_amt, pay_day)
        if p3.button("Mark paid"):
            run_action(svc.mark_capital_call_paid, sel_call, pay_day)
        st.dataframe(allocations_frame(svc.store.get_capital_call_allocations(sel_call)),
                     use_container_width=True, hide_index=True)


# ============================================================
# DISTRIBUTIONS
# ============================================================
with tab_dists:
    dists = svc.store.list_distributions(structure_id)
    dsum = distribution_summary(dists)
    st.caption(
        f"{dsum['totalDistributions']} distributions · {fmt_money(dsum['totalAmount'])} · "
        f"LP {fmt_money(dsum['lpTotal'])} · GP {fmt_money(dsum['gpTotal'])} · fees {fmt_money(dsum['managementFees'])}"
    )

    with st.form("new_distribution"):
        dist_no = st.text_input("Distribution number")
        dist_amt = st.number_input("Amount", min_value=0.0, step=10000.0)
        dist_day = st.date_input("Distribution date", value=date.today())
        if st.form_submit_button("Create distribution"):
            run_action(svc.create_distribution, structure_id, dist_no, dist_amt, distribution_date=dist_day)

    if dists:
        st.dataframe(distributions_frame(dists), use_container_width=True, hide_index=True)
        sel_dist = st.selectbox("Distribution", [d.id for d in dists])
        charge_fee = st.checkbox("Charge management fee", value=False)

        b1, b2, b3, b4 = st.columns(4)
        if b1.button("Preview waterfall"):
            preview = run_action(svc.preview_waterfall, sel_dist, charge_fee)
            if preview:
                show_waterfall_table("Waterfall preview", preview)
                st.altair_chart(tier_chart(preview), use_container_width=True)
        if b2.button("Apply waterfall", type="primary"):
            applied = run_action(svc.apply_waterfall, sel_dist, charge_fee)
            if applied:
                st.json(applied.as_dict())
                st.altair_chart(tier_chart(applied), use_container_width=True)
        if b3.button("Allocate LP pool"):
            allocs = run_action(svc.create_distribution_allocations, sel_dist)
            if allocs is not None:
                st.json(allocations_as_dict(allocs))
        if b4.button("Mark paid"):
            run_action(svc.mark_distribution_paid, sel_dist)

        st.dataframe(allocations_frame(svc.store.get_distribution_allocations(sel_dist)),
                     use_container_width=True, hide_index=True)

        if st.button("Export distributions CSV"):
            out = svc.store.export_table_to_csv('distributions', 'distributions_export.csv')
            st.success(f"Exported {out['rows']} rows to {out['file']}")

        st.download_button(
            "Download ledger (Excel)",
            data=ledger_workbook(svc.store.list_capital_calls(structure_id), dists),
            file_name=f"ledger_{structure_id}.xlsx",
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )
