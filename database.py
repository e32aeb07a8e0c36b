"""
database.py
SQLite storage for the fund ledger

Provides:
- Schema creation and indexes
- Connection management (WAL, foreign keys, explicit transactions)
- Record mapping between dataclasses and rows
- Atomic conditional writes for the waterfall and payment workflows
- Table export to CSV / DataFrame

Money is stored as INTEGER cents, percentages as TEXT decimals and dates as
ISO strings so that SQL arithmetic on balances is exact.
"""

import sqlite3
import logging
from contextlib import contextmanager
from dataclasses import fields
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional
import pandas as pd

from balances import (check_financials_update, distribution_waterfall_fields,
                      exit_fields, investment_distribution_deltas,
                      merge_distribution_update)
from capital_calls import (apply_payment, check_can_send, counts_toward_called,
                           merge_call_update)
from config import CALL_DRAFT, CALL_SENT, DB_PATH, DISTRIBUTION_DRAFT, DISTRIBUTION_PAID
from errors import ConflictError, NotFoundError, ValidationError
from models import (CapitalCall, CapitalCallAllocation, Distribution,
                    DistributionAllocation, Investment, InvestorMembership,
                    Structure, WaterfallResult, WaterfallTier)
from tiers import merge_tier_update, validate_ladder
from utils import as_date, from_cents, to_cents, to_money

logger = logging.getLogger(__name__)


# ============================================================
# SCHEMA
# ============================================================

TABLE_DEFINITIONS = {
    'structures': {
        'description': 'Investment vehicles and their running totals',
        'ddl': """
            CREATE TABLE IF NOT EXISTS structures (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                structure_type TEXT NOT NULL,
                parent_structure_id INTEGER REFERENCES structures(id) ON DELETE CASCADE,
                hierarchy_level INTEGER NOT NULL DEFAULT 1,
                total_commitment INTEGER NOT NULL DEFAULT 0,
                total_called INTEGER NOT NULL DEFAULT 0,
                total_distributed INTEGER NOT NULL DEFAULT 0,
                total_invested INTEGER NOT NULL DEFAULT 0,
                management_fee TEXT,
                carried_interest TEXT,
                hurdle_rate TEXT,
                waterfall_type TEXT,
                inception_date TEXT,
                base_currency TEXT,
                status TEXT,
                created_by TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """,
    },
    'structure_admins': {
        'description': 'Admin/support users assigned to structures',
        'ddl': """
            CREATE TABLE IF NOT EXISTS structure_admins (
                structure_id INTEGER NOT NULL REFERENCES structures(id) ON DELETE CASCADE,
                user_id TEXT NOT NULL,
                UNIQUE(structure_id, user_id)
            )
        """,
    },
    'structure_investors': {
        'description': 'Investor memberships, commitments and ownership',
        'ddl': """
            CREATE TABLE IF NOT EXISTS structure_investors (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                structure_id INTEGER NOT NULL REFERENCES structures(id) ON DELETE CASCADE,
                investor_id TEXT NOT NULL,
                investor_name TEXT,
                commitment INTEGER NOT NULL DEFAULT 0,
                ownership_percent TEXT,
                UNIQUE(structure_id, investor_id)
            )
        """,
    },
    'waterfall_tiers': {
        'description': 'Distribution ladder per structure',
        'ddl': """
            CREATE TABLE IF NOT EXISTS waterfall_tiers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                structure_id INTEGER NOT NULL REFERENCES structures(id) ON DELETE CASCADE,
                tier_number INTEGER NOT NULL,
                tier_name TEXT NOT NULL,
                lp_share_percent TEXT NOT NULL,
                gp_share_percent TEXT NOT NULL,
                threshold_amount INTEGER,
                threshold_irr TEXT,
                description TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_by TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """,
    },
    'investments': {
        'description': 'Portfolio positions (equity, debt, mixed)',
        'ddl': """
            CREATE TABLE IF NOT EXISTS investments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                structure_id INTEGER NOT NULL REFERENCES structures(id) ON DELETE CASCADE,
                investment_name TEXT NOT NULL,
                investment_type TEXT NOT NULL,
                investment_date TEXT,
                exit_date TEXT,
                status TEXT,
                equity_invested INTEGER DEFAULT 0,
                equity_current_value INTEGER DEFAULT 0,
                equity_exit_value INTEGER,
                equity_realized_gain INTEGER,
                principal_provided INTEGER DEFAULT 0,
                interest_rate TEXT,
                principal_repaid INTEGER DEFAULT 0,
                interest_received INTEGER DEFAULT 0,
                outstanding_principal INTEGER DEFAULT 0,
                irr_percent TEXT,
                moic TEXT,
                total_returns INTEGER DEFAULT 0
            )
        """,
    },
    'capital_calls': {
        'description': 'Capital calls with paid/unpaid totals',
        'ddl': """
            CREATE TABLE IF NOT EXISTS capital_calls (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                structure_id INTEGER NOT NULL REFERENCES structures(id) ON DELETE CASCADE,
                call_number TEXT NOT NULL,
                call_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                total_call_amount INTEGER NOT NULL,
                total_paid_amount INTEGER NOT NULL DEFAULT 0,
                total_unpaid_amount INTEGER NOT NULL,
                status TEXT NOT NULL,
                sent_date TEXT,
                investment_id INTEGER REFERENCES investments(id) ON DELETE SET NULL,
                purpose TEXT,
                notes TEXT,
                created_by TEXT,
                CHECK (total_paid_amount + total_unpaid_amount = total_call_amount)
            )
        """,
    },
    'capital_call_payments': {
        'description': 'Dated payments received against capital calls',
        'ddl': """
            CREATE TABLE IF NOT EXISTS capital_call_payments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                capital_call_id INTEGER NOT NULL REFERENCES capital_calls(id) ON DELETE CASCADE,
                payment_date TEXT NOT NULL,
                amount INTEGER NOT NULL,
                recorded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """,
    },
    'capital_call_allocations': {
        'description': 'Per-investor share of a capital call',
        'ddl': """
            CREATE TABLE IF NOT EXISTS capital_call_allocations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                capital_call_id INTEGER NOT NULL REFERENCES capital_calls(id) ON DELETE CASCADE,
                investor_id TEXT NOT NULL,
                ownership_percent TEXT NOT NULL,
                allocated_amount INTEGER NOT NULL,
                paid_amount INTEGER NOT NULL DEFAULT 0,
                remaining_amount INTEGER NOT NULL,
                status TEXT NOT NULL,
                due_date TEXT,
                UNIQUE(capital_call_id, investor_id)
            )
        """,
    },
    'distributions': {
        'description': 'Distribution events and their waterfall results',
        'ddl': """
            CREATE TABLE IF NOT EXISTS distributions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                structure_id INTEGER NOT NULL REFERENCES structures(id) ON DELETE CASCADE,
                distribution_number TEXT NOT NULL,
                distribution_date TEXT NOT NULL,
                total_amount INTEGER NOT NULL,
                status TEXT NOT NULL,
                investment_id INTEGER REFERENCES investments(id) ON DELETE SET NULL,
                source TEXT,
                notes TEXT,
                source_equity_gain INTEGER DEFAULT 0,
                source_debt_interest INTEGER DEFAULT 0,
                source_debt_principal INTEGER DEFAULT 0,
                source_other INTEGER DEFAULT 0,
                waterfall_applied INTEGER NOT NULL DEFAULT 0,
                tier1_amount INTEGER DEFAULT 0,
                tier2_amount INTEGER DEFAULT 0,
                tier3_amount INTEGER DEFAULT 0,
                tier4_amount INTEGER DEFAULT 0,
                lp_total_amount INTEGER DEFAULT 0,
                gp_total_amount INTEGER DEFAULT 0,
                management_fee_amount INTEGER DEFAULT 0,
                created_by TEXT
            )
        """,
    },
    'distribution_tiers': {
        'description': 'Per-tier LP/GP lines of applied waterfalls',
        'ddl': """
            CREATE TABLE IF NOT EXISTS distribution_tiers (
                distribution_id INTEGER NOT NULL REFERENCES distributions(id) ON DELETE CASCADE,
                tier_number INTEGER NOT NULL,
                tier_name TEXT,
                amount INTEGER NOT NULL,
                lp_amount INTEGER NOT NULL,
                gp_amount INTEGER NOT NULL,
                PRIMARY KEY (distribution_id, tier_number)
            )
        """,
    },
    'distribution_allocations': {
        'description': 'Per-investor share of a distribution LP pool',
        'ddl': """
            CREATE TABLE IF NOT EXISTS distribution_allocations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                distribution_id INTEGER NOT NULL REFERENCES distributions(id) ON DELETE CASCADE,
                investor_id TEXT NOT NULL,
                ownership_percent TEXT NOT NULL,
                allocated_amount INTEGER NOT NULL,
                paid_amount INTEGER NOT NULL DEFAULT 0,
                remaining_amount INTEGER NOT NULL,
                status TEXT NOT NULL,
                payment_date TEXT,
                UNIQUE(distribution_id, investor_id)
            )
        """,
    },
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_structures_parent ON structures(parent_structure_id)",
    "CREATE INDEX IF NOT EXISTS idx_investors_structure ON structure_investors(structure_id)",
    "CREATE INDEX IF NOT EXISTS idx_tiers_structure ON waterfall_tiers(structure_id, is_active)",
    "CREATE INDEX IF NOT EXISTS idx_investments_structure ON investments(structure_id)",
    "CREATE INDEX IF NOT EXISTS idx_calls_structure ON capital_calls(structure_id)",
    "CREATE INDEX IF NOT EXISTS idx_payments_call ON capital_call_payments(capital_call_id)",
    "CREATE INDEX IF NOT EXISTS idx_distributions_structure ON distributions(structure_id)",
    "CREATE INDEX IF NOT EXISTS idx_dist_alloc_investor ON distribution_allocations(investor_id)",
]


# ============================================================
# FIELD ENCODING
# ============================================================

MONEY_FIELDS = {
    'total_commitment', 'total_called', 'total_distributed', 'total_invested',
    'commitment', 'threshold_amount',
    'equity_invested', 'equity_current_value', 'equity_exit_value', 'equity_realized_gain',
    'principal_provided', 'principal_repaid', 'interest_received', 'outstanding_principal',
    'total_returns',
    'total_call_amount', 'total_paid_amount', 'total_unpaid_amount',
    'allocated_amount', 'paid_amount', 'remaining_amount', 'amount', 'lp_amount', 'gp_amount',
    'total_amount', 'source_equity_gain', 'source_debt_interest', 'source_debt_principal',
    'source_other', 'tier1_amount', 'tier2_amount', 'tier3_amount', 'tier4_amount',
    'lp_total_amount', 'gp_total_amount', 'management_fee_amount',
}

DECIMAL_FIELDS = {
    'management_fee', 'carried_interest', 'hurdle_rate', 'ownership_percent',
    'lp_share_percent', 'gp_share_percent', 'threshold_irr', 'interest_rate',
    'irr_percent', 'moic',
}

DATE_FIELDS = {
    'inception_date', 'investment_date', 'exit_date', 'call_date', 'due_date',
    'sent_date', 'distribution_date', 'payment_date',
}

BOOL_FIELDS = {'is_active', 'waterfall_applied'}


def _encode(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in MONEY_FIELDS:
        return to_cents(value)
    if name in DECIMAL_FIELDS:
        return str(value)
    if name in DATE_FIELDS:
        return as_date(value).isoformat()
    if name in BOOL_FIELDS:
        return 1 if value else 0
    return value


def _decode(name: str, value: Any) -> Any:
    if name in MONEY_FIELDS:
        return None if value is None else from_cents(value)
    if value is None:
        return None
    if name in DECIMAL_FIELDS:
        return Decimal(str(value))
    if name in DATE_FIELDS:
        return date.fromisoformat(value)
    if name in BOOL_FIELDS:
        return bool(value)
    return value


def _row_to(cls, row: sqlite3.Row):
    keys = set(row.keys())
    return cls(**{f.name: _decode(f.name, row[f.name]) for f in fields(cls) if f.name in keys})


def _insert(conn: sqlite3.Connection, table: str, obj, exclude=("id",)) -> int:
    data = {f.name: _encode(f.name, getattr(obj, f.name)) for f in fields(obj) if f.name not in exclude}
    cols = ", ".join(data)
    marks = ", ".join("?" for _ in data)
    cur = conn.execute(f"INSERT INTO {table} ({cols}) VALUES ({marks})", tuple(data.values()))
    return cur.lastrowid


def _update(conn: sqlite3.Connection, table: str, row_id: int, values: Dict[str, Any],
            where: str = "", params: tuple = ()) -> int:
    sets = ", ".join(f"{k} = ?" for k in values)
    args = tuple(_encode(k, v) for k, v in values.items())
    sql = f"UPDATE {table} SET {sets} WHERE id = ?" + (f" AND {where}" if where else "")
    return conn.execute(sql, args + (row_id,) + params).rowcount


# ============================================================
# STORE
# ============================================================

class LedgerStore:
    """
    Storage port for the fund ledger

    Every public method opens its own connection.  Writes that must be
    atomic run inside BEGIN IMMEDIATE so no other writer can interleave
    between the read and the conditional update.
    """

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def get_db_connection(self) -> sqlite3.Connection:
        """
        Get database connection with optimizations

        Returns:
            sqlite3.Connection in autocommit mode with row_factory set to Row
        """
        conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None, timeout=30)
        conn.row_factory = sqlite3.Row

        conn.execute("PRAGMA synchronous=NORMAL")  # Faster writes
        conn.execute("PRAGMA foreign_keys=ON")

        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction holding the database write lock; rolls back on error"""
        conn = self.get_db_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error:
            conn.close()
            raise
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        conn = self.get_db_connection()
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    def init_database(self) -> Dict[str, str]:
        """
        Create all tables and indexes

        Returns:
            {table_name: 'ready'}
        """
        results = {}
        logger.info("=" * 60)
        logger.info(f"DATABASE INITIALIZATION ({self.db_path})")
        logger.info("=" * 60)

        # Write-Ahead Logging (persists in the file)
        conn = self.get_db_connection()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
        finally:
            conn.close()

        with self.transaction() as conn:
            for table_name, table_info in TABLE_DEFINITIONS.items():
                conn.execute(table_info['ddl'])
                results[table_name] = 'ready'
                logger.info(f"✅ {table_name}: {table_info['description']}")
            for idx_sql in INDEXES:
                conn.execute(idx_sql)

        logger.info("✅ Created indexes")
        return results

    # ------------------------------------------------------------------
    # Structures
    # ------------------------------------------------------------------

    def create_structure(self, structure: Structure) -> Structure:
        with self.transaction() as conn:
            structure.id = _insert(conn, 'structures', structure)
        logger.info(f"✅ Created structure {structure.id} ({structure.name})")
        return structure

    def get_structure(self, structure_id: int) -> Structure:
        rows = self._query("SELECT * FROM structures WHERE id = ?", (structure_id,))
        if not rows:
            raise NotFoundError("Structure", structure_id)
        return _row_to(Structure, rows[0])

    def list_structures(self, created_by: Optional[str] = None) -> List[Structure]:
        if created_by is None:
            rows = self._query("SELECT * FROM structures ORDER BY id")
        else:
            rows = self._query("SELECT * FROM structures WHERE created_by = ? ORDER BY id", (created_by,))
        return [_row_to(Structure, r) for r in rows]

    def list_child_structures(self, parent_id: int) -> List[Structure]:
        rows = self._query("SELECT * FROM structures WHERE parent_structure_id = ? ORDER BY id", (parent_id,))
        return [_row_to(Structure, r) for r in rows]

    def update_structure_financials(self, structure_id: int, updates: Dict[str, Any]) -> Structure:
        """Set running totals; none may decrease"""
        with self.transaction() as conn:
            rows = conn.execute("SELECT * FROM structures WHERE id = ?", (structure_id,)).fetchall()
            if not rows:
                raise NotFoundError("Structure", structure_id)
            clean = check_financials_update(_row_to(Structure, rows[0]), updates)
            if clean:
                _update(conn, 'structures', structure_id, clean)
        return self.get_structure(structure_id)

    def delete_structure(self, structure_id: int) -> None:
        with self.transaction() as conn:
            if conn.execute("DELETE FROM structures WHERE id = ?", (structure_id,)).rowcount == 0:
                raise NotFoundError("Structure", structure_id)
        logger.info(f"Deleted structure {structure_id}")

    def add_structure_admin(self, structure_id: int, user_id: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO structure_admins (structure_id, user_id) VALUES (?, ?)",
                (structure_id, user_id),
            )

    def get_admin_structure_ids(self, user_id: str) -> List[int]:
        rows = self._query("SELECT structure_id FROM structure_admins WHERE user_id = ?", (user_id,))
        return [r['structure_id'] for r in rows]

    # ------------------------------------------------------------------
    # Investor memberships
    # ------------------------------------------------------------------

    def add_investor(self, membership: InvestorMembership) -> InvestorMembership:
        with self.transaction() as conn:
            try:
                _insert(conn, 'structure_investors', membership, exclude=())
            except sqlite3.IntegrityError as e:
                raise ConflictError(
                    f"Investor {membership.investor_id} already belongs to structure {membership.structure_id}"
                ) from e
        return membership

    def get_memberships(self, structure_id: int) -> List[InvestorMembership]:
        rows = self._query(
            "SELECT * FROM structure_investors WHERE structure_id = ? ORDER BY investor_id", (structure_id,)
        )
        return [_row_to(InvestorMembership, r) for r in rows]

    # ------------------------------------------------------------------
    # Waterfall tiers
    # ------------------------------------------------------------------

    def create_tiers(self, structure_id: int, tiers: List[WaterfallTier], replace: bool = False) -> List[WaterfallTier]:
        """
        Persist a full ladder

        Without replace, any existing tier (active or not) is a conflict.
        With replace, existing tiers are deactivated in the same transaction.
        """
        validate_ladder(tiers)
        with self.transaction() as conn:
            existing = conn.execute(
                "SELECT COUNT(*) AS cnt FROM waterfall_tiers WHERE structure_id = ?", (structure_id,)
            ).fetchone()['cnt']
            if existing and not replace:
                raise ConflictError(
                    "Waterfall tiers already exist for this structure. "
                    "Delete or replace the existing ladder first."
                )
            if replace:
                conn.execute("UPDATE waterfall_tiers SET is_active = 0 WHERE structure_id = ?", (structure_id,))
            for t in tiers:
                t.structure_id = structure_id
                t.id = _insert(conn, 'waterfall_tiers', t)
        logger.info(f"✅ {'Replaced' if replace else 'Created'} ladder for structure {structure_id}")
        return tiers

    def get_tiers(self, structure_id: int, active_only: bool = True) -> List[WaterfallTier]:
        sql = "SELECT * FROM waterfall_tiers WHERE structure_id = ?"
        if active_only:
            sql += " AND is_active = 1"
        rows = self._query(sql + " ORDER BY tier_number, id", (structure_id,))
        return [_row_to(WaterfallTier, r) for r in rows]

    def get_tier(self, tier_id: int) -> WaterfallTier:
        rows = self._query("SELECT * FROM waterfall_tiers WHERE id = ?", (tier_id,))
        if not rows:
            raise NotFoundError("Waterfall tier", tier_id)
        return _row_to(WaterfallTier, rows[0])

    def update_tier(self, tier_id: int, updates: Dict[str, Any]) -> WaterfallTier:
        return self.update_tiers({tier_id: updates})[0]

    def update_tiers(self, updates_by_id: Dict[int, Dict[str, Any]]) -> List[WaterfallTier]:
        """
        Apply partial updates to several tiers in one transaction

        Each merged tier is re-validated; if the touched tiers belong to one
        structure its resulting active ladder must also validate.
        """
        merged_tiers = []
        with self.transaction() as conn:
            for tier_id, updates in updates_by_id.items():
                rows = conn.execute("SELECT * FROM waterfall_tiers WHERE id = ?", (tier_id,)).fetchall()
                if not rows:
                    raise NotFoundError("Waterfall tier", tier_id)
                merged = merge_tier_update(_row_to(WaterfallTier, rows[0]), updates)
                changed = {k: getattr(merged, k) for k in updates if k not in ("id", "structure_id", "created_by")}
                if changed:
                    _update(conn, 'waterfall_tiers', tier_id, changed)
                merged_tiers.append(merged)

            structure_ids = {t.structure_id for t in merged_tiers}
            if len(structure_ids) == 1 and len(merged_tiers) > 1:
                rows = conn.execute(
                    "SELECT * FROM waterfall_tiers WHERE structure_id = ? AND is_active = 1",
                    (structure_ids.pop(),),
                ).fetchall()
                validate_ladder([_row_to(WaterfallTier, r) for r in rows])

        logger.info(f"✅ Updated tiers {list(updates_by_id)}")
        return merged_tiers

    def deactivate_all_tiers(self, structure_id: int) -> int:
        with self.transaction() as conn:
            n = conn.execute(
                "UPDATE waterfall_tiers SET is_active = 0 WHERE structure_id = ? AND is_active = 1",
                (structure_id,),
            ).rowcount
        logger.info(f"Deactivated {n} tiers for structure {structure_id}")
        return n

    # ------------------------------------------------------------------
    # Investments
    # ------------------------------------------------------------------

    def create_investment(self, inv: Investment) -> Investment:
        with self.transaction() as conn:
            inv.id = _insert(conn, 'investments', inv)
        return inv

    def get_investment(self, investment_id: int) -> Investment:
        rows = self._query("SELECT * FROM investments WHERE id = ?", (investment_id,))
        if not rows:
            raise NotFoundError("Investment", investment_id)
        return _row_to(Investment, rows[0])

    def list_investments(self, structure_id: int) -> List[Investment]:
        rows = self._query("SELECT * FROM investments WHERE structure_id = ? ORDER BY id", (structure_id,))
        return [_row_to(Investment, r) for r in rows]

    def update_investment(self, investment_id: int, values: Dict[str, Any]) -> Investment:
        with self.transaction() as conn:
            if _update(conn, 'investments', investment_id, values) == 0:
                raise NotFoundError("Investment", investment_id)
        return self.get_investment(investment_id)

    def mark_investment_exited(self, investment_id: int, exit_value=None, exit_date: Optional[date] = None) -> Investment:
        with self.transaction() as conn:
            rows = conn.execute("SELECT * FROM investments WHERE id = ?", (investment_id,)).fetchall()
            if not rows:
                raise NotFoundError("Investment", investment_id)
            _update(conn, 'investments', investment_id, exit_fields(_row_to(Investment, rows[0]), exit_value, exit_date))
        return self.get_investment(investment_id)

    def get_investment_receipts(self, investment_id: int) -> List[tuple]:
        """[(date, amount)] distributions sourced from an investment"""
        rows = self._query(
            "SELECT distribution_date, total_amount FROM distributions "
            "WHERE investment_id = ? AND waterfall_applied = 1 ORDER BY distribution_date",
            (investment_id,),
        )
        return [(date.fromisoformat(r['distribution_date']), float(from_cents(r['total_amount']))) for r in rows]

    # ------------------------------------------------------------------
    # Capital calls
    # ------------------------------------------------------------------

    def create_capital_call(self, call: CapitalCall) -> CapitalCall:
        with self.transaction() as conn:
            call.id = _insert(conn, 'capital_calls', call)
        logger.info(f"✅ Created capital call {call.id} ({call.call_number}) for {call.total_call_amount}")
        return call

    def get_capital_call(self, call_id: int) -> CapitalCall:
        rows = self._query("SELECT * FROM capital_calls WHERE id = ?", (call_id,))
        if not rows:
            raise NotFoundError("Capital call", call_id)
        return _row_to(CapitalCall, rows[0])

    def list_capital_calls(self, structure_id: Optional[int] = None, status: Optional[str] = None) -> List[CapitalCall]:
        sql, params = "SELECT * FROM capital_calls WHERE 1 = 1", []
        if structure_id is not None:
            sql += " AND structure_id = ?"
            params.append(structure_id)
        if status is not None:
            sql += " AND status = ?"
            params.append(status)
        rows = self._query(sql + " ORDER BY call_date, id", tuple(params))
        return [_row_to(CapitalCall, r) for r in rows]

    def mark_capital_call_sent(self, call_id: int, sent_date: Optional[date] = None) -> CapitalCall:
        """Draft -> Sent; adds the call amount to the structure's total_called"""
        with self.transaction() as conn:
            rows = conn.execute("SELECT * FROM capital_calls WHERE id = ?", (call_id,)).fetchall()
            if not rows:
                raise NotFoundError("Capital call", call_id)
            call = _row_to(CapitalCall, rows[0])
            check_can_send(call)

            n = _update(conn, 'capital_calls', call_id,
                        {'status': CALL_SENT, 'sent_date': sent_date or date.today()},
                        where="status = ?", params=(CALL_DRAFT,))
            if n == 0:
                raise ConflictError(f"Capital call {call_id} is no longer Draft")
            conn.execute(
                "UPDATE structures SET total_called = total_called + ? WHERE id = ?",
                (to_cents(call.total_call_amount), call.structure_id),
            )
        logger.info(f"✅ Capital call {call_id} sent")
        return self.get_capital_call(call_id)

    def record_capital_call_payment(self, call_id: int, amount, payment_date: Optional[date] = None) -> CapitalCall:
        """
        Add a payment to a call's paid total

        The update is conditional on the paid total read in the same
        transaction, so a payment can never be counted twice or lost.
        A Draft call receiving its first payment is added to total_called.
        """
        pay_day = as_date(payment_date) if payment_date is not None else date.today()
        with self.transaction() as conn:
            rows = conn.execute("SELECT * FROM capital_calls WHERE id = ?", (call_id,)).fetchall()
            if not rows:
                raise NotFoundError("Capital call", call_id)
            call = _row_to(CapitalCall, rows[0])
            total_paid, total_unpaid, status = apply_payment(call, amount)

            n = _update(
                conn, 'capital_calls', call_id,
                {'total_paid_amount': total_paid, 'total_unpaid_amount': total_unpaid, 'status': status},
                where="total_paid_amount = ?", params=(to_cents(call.total_paid_amount),),
            )
            if n == 0:
                raise ConflictError(f"Capital call {call_id} changed while recording payment")

            conn.execute(
                "INSERT INTO capital_call_payments (capital_call_id, payment_date, amount) VALUES (?, ?, ?)",
                (call_id, pay_day.isoformat(), to_cents(amount)),
            )
            if not counts_toward_called(call):
                conn.execute(
                    "UPDATE structures SET total_called = total_called + ? WHERE id = ?",
                    (to_cents(call.total_call_amount), call.structure_id),
                )
        logger.info(f"✅ Capital call {call_id}: paid {to_money(amount)} -> {status}")
        return self.get_capital_call(call_id)

    def get_contributions(self, structure_id: int) -> List[dict]:
        """Dated payments across all capital calls of a structure"""
        rows = self._query(
            """
            SELECT p.payment_date, p.amount FROM capital_call_payments p
            JOIN capital_calls c ON c.id = p.capital_call_id
            WHERE c.structure_id = ?
            ORDER BY p.payment_date, p.id
            """,
            (structure_id,),
        )
        return [{'payment_date': r['payment_date'], 'amount': from_cents(r['amount'])} for r in rows]

    def create_capital_call_allocations(self, call_id: int, allocations: List[CapitalCallAllocation]) -> List[CapitalCallAllocation]:
        """Insert every allocation or none"""
        with self.transaction() as conn:
            if not conn.execute("SELECT 1 FROM capital_calls WHERE id = ?", (call_id,)).fetchall():
                raise NotFoundError("Capital call", call_id)
            if conn.execute("SELECT 1 FROM capital_call_allocations WHERE capital_call_id = ?", (call_id,)).fetchall():
                raise ConflictError(f"Allocations already exist for capital call {call_id}")
            for a in allocations:
                a.id = _insert(conn, 'capital_call_allocations', a)
        logger.info(f"✅ Created {len(allocations)} allocations for capital call {call_id}")
        return allocations

    def get_capital_call_allocations(self, call_id: int) -> List[CapitalCallAllocation]:
        rows = self._query(
            "SELECT * FROM capital_call_allocations WHERE capital_call_id = ? ORDER BY investor_id", (call_id,)
        )
        return [_row_to(CapitalCallAllocation, r) for r in rows]

    def delete_capital_call(self, call_id: int) -> None:
        with self.transaction() as conn:
            rows = conn.execute("SELECT * FROM capital_calls WHERE id = ?", (call_id,)).fetchall()
            if not rows:
                raise NotFoundError("Capital call", call_id)
            if _row_to(CapitalCall, rows[0]).total_paid_amount > 0:
                raise ConflictError(f"Capital call {call_id} has payments and cannot be deleted")
            conn.execute("DELETE FROM capital_calls WHERE id = ?", (call_id,))
        logger.info(f"Deleted capital call {call_id}")

    def update_capital_call(self, call_id: int, updates: Dict[str, Any]) -> CapitalCall:
        """
        Edit an unpaid Draft call

        The write is conditional on the call still being an unpaid Draft.
        The amount cannot change once investor allocations exist.
        """
        with self.transaction() as conn:
            rows = conn.execute("SELECT * FROM capital_calls WHERE id = ?", (call_id,)).fetchall()
            if not rows:
                raise NotFoundError("Capital call", call_id)
            call = _row_to(CapitalCall, rows[0])
            merged = merge_call_update(call, updates)

            if merged.total_call_amount != call.total_call_amount and conn.execute(
                "SELECT 1 FROM capital_call_allocations WHERE capital_call_id = ?", (call_id,)
            ).fetchall():
                raise ConflictError(f"Capital call {call_id} has allocations; its amount cannot change")

            values = {k: getattr(merged, k) for k in updates}
            values["total_unpaid_amount"] = merged.total_unpaid_amount
            n = _update(conn, 'capital_calls', call_id, values,
                        where="status = ? AND total_paid_amount = 0", params=(CALL_DRAFT,))
            if n == 0:
                raise ConflictError(f"Capital call {call_id} is no longer an unpaid Draft")
        logger.info(f"✅ Updated capital call {call_id}: {sorted(updates)}")
        return self.get_capital_call(call_id)

    # ------------------------------------------------------------------
    # Distributions
    # ------------------------------------------------------------------

    def create_distribution(self, dist: Distribution) -> Distribution:
        with self.transaction() as conn:
            dist.id = _insert(conn, 'distributions', dist)
        logger.info(f"✅ Created distribution {dist.id} ({dist.distribution_number}) for {dist.total_amount}")
        return dist

    def get_distribution(self, distribution_id: int) -> Distribution:
        rows = self._query("SELECT * FROM distributions WHERE id = ?", (distribution_id,))
        if not rows:
            raise NotFoundError("Distribution", distribution_id)
        return _row_to(Distribution, rows[0])

    def list_distributions(self, structure_id: Optional[int] = None, status: Optional[str] = None) -> List[Distribution]:
        sql, params = "SELECT * FROM distributions WHERE 1 = 1", []
        if structure_id is not None:
            sql += " AND structure_id = ?"
            params.append(structure_id)
        if status is not None:
            sql += " AND status = ?"
            params.append(status)
        rows = self._query(sql + " ORDER BY distribution_date DESC, id DESC", tuple(params))
        return [_row_to(Distribution, r) for r in rows]

    def get_prior_tier_lines(self, structure_id: int, exclude_distribution_id: Optional[int] = None) -> List[dict]:
        """Tier lines of every applied waterfall in a structure"""
        rows = self._query(
            """
            SELECT d.distribution_date, t.tier_number, t.amount, t.lp_amount, t.gp_amount
            FROM distribution_tiers t
            JOIN distributions d ON d.id = t.distribution_id
            WHERE d.structure_id = ? AND d.waterfall_applied = 1 AND d.id != ?
            ORDER BY d.distribution_date, t.tier_number
            """,
            (structure_id, exclude_distribution_id if exclude_distribution_id is not None else -1),
        )
        return [
            {
                'distribution_date': date.fromisoformat(r['distribution_date']),
                'tier_number': r['tier_number'],
                'amount': from_cents(r['amount']),
                'lp_amount': from_cents(r['lp_amount']),
                'gp_amount': from_cents(r['gp_amount']),
            }
            for r in rows
        ]

    def apply_waterfall(self, distribution_id: int,
                        compute: Callable[[Distribution], WaterfallResult]) -> Distribution:
        """
        Apply a waterfall to a distribution exactly once

        compute runs while this transaction holds the write lock, so the
        structure history it reads cannot change underneath it.  The flag
        flips through a conditional update on waterfall_applied = 0; the
        structure and investment totals move in the same transaction.

        Raises:
            NotFoundError: unknown distribution
            ConflictError: waterfall already applied
        """
        with self.transaction() as conn:
            rows = conn.execute("SELECT * FROM distributions WHERE id = ?", (distribution_id,)).fetchall()
            if not rows:
                raise NotFoundError("Distribution", distribution_id)
            dist = _row_to(Distribution, rows[0])
            if dist.waterfall_applied:
                logger.warning(f"⚠️  Waterfall replay rejected for distribution {distribution_id}")
                raise ConflictError(f"Waterfall already applied to distribution {distribution_id}")

            result = compute(dist)

            values = distribution_waterfall_fields(result)
            values['waterfall_applied'] = True
            n = _update(conn, 'distributions', distribution_id, values, where="waterfall_applied = 0")
            if n == 0:
                raise ConflictError(f"Waterfall already applied to distribution {distribution_id}")

            conn.executemany(
                "INSERT INTO distribution_tiers (distribution_id, tier_number, tier_name, amount, lp_amount, gp_amount) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                [(distribution_id, f.tier_number, f.tier_name, to_cents(f.amount),
                  to_cents(f.lp_amount), to_cents(f.gp_amount)) for f in result.fills],
            )
            conn.execute(
                "UPDATE structures SET total_distributed = total_distributed + ? WHERE id = ?",
                (to_cents(dist.total_amount), dist.structure_id),
            )

            if dist.investment_id is not None:
                inv_rows = conn.execute("SELECT * FROM investments WHERE id = ?", (dist.investment_id,)).fetchall()
                if not inv_rows:
                    raise NotFoundError("Investment", dist.investment_id)
                deltas = investment_distribution_deltas(dist, _row_to(Investment, inv_rows[0]))
                _update(conn, 'investments', dist.investment_id, deltas)

        logger.info(f"✅ Waterfall applied to distribution {distribution_id}: {result.as_dict()}")
        return self.get_distribution(distribution_id)

    def get_distribution_tiers(self, distribution_id: int) -> List[dict]:
        rows = self._query(
            "SELECT * FROM distribution_tiers WHERE distribution_id = ? ORDER BY tier_number", (distribution_id,)
        )
        return [
            {
                'tier_number': r['tier_number'],
                'tier_name': r['tier_name'],
                'amount': from_cents(r['amount']),
                'lp_amount': from_cents(r['lp_amount']),
                'gp_amount': from_cents(r['gp_amount']),
            }
            for r in rows
        ]

    def mark_distribution_paid(self, distribution_id: int) -> Distribution:
        with self.transaction() as conn:
            rows = conn.execute("SELECT * FROM distributions WHERE id = ?", (distribution_id,)).fetchall()
            if not rows:
                raise NotFoundError("Distribution", distribution_id)
            if not rows[0]['waterfall_applied']:
                logger.warning(f"⚠️  Distribution {distribution_id} marked paid before any waterfall was applied")
            _update(conn, 'distributions', distribution_id, {'status': DISTRIBUTION_PAID})
        return self.get_distribution(distribution_id)

    def create_distribution_allocations(self, distribution_id: int,
                                        allocations: List[DistributionAllocation]) -> List[DistributionAllocation]:
        """Insert every allocation or none; requires an applied waterfall"""
        with self.transaction() as conn:
            rows = conn.execute("SELECT waterfall_applied FROM distributions WHERE id = ?", (distribution_id,)).fetchall()
            if not rows:
                raise NotFoundError("Distribution", distribution_id)
            if not rows[0]['waterfall_applied']:
                raise ConflictError(f"Apply the waterfall to distribution {distribution_id} before allocating")
            if conn.execute("SELECT 1 FROM distribution_allocations WHERE distribution_id = ?",
                            (distribution_id,)).fetchall():
                raise ConflictError(f"Allocations already exist for distribution {distribution_id}")
            for a in allocations:
                a.id = _insert(conn, 'distribution_allocations', a)
        logger.info(f"✅ Created {len(allocations)} allocations for distribution {distribution_id}")
        return allocations

    def get_distribution_allocations(self, distribution_id: int) -> List[DistributionAllocation]:
        rows = self._query(
            "SELECT * FROM distribution_allocations WHERE distribution_id = ? ORDER BY investor_id",
            (distribution_id,),
        )
        return [_row_to(DistributionAllocation, r) for r in rows]

    def investor_distribution_total(self, investor_id: str, structure_id: Optional[int] = None) -> Decimal:
        sql = (
            "SELECT COALESCE(SUM(a.allocated_amount), 0) AS total FROM distribution_allocations a "
            "JOIN distributions d ON d.id = a.distribution_id WHERE a.investor_id = ?"
        )
        params: tuple = (investor_id,)
        if structure_id is not None:
            sql += " AND d.structure_id = ?"
            params += (structure_id,)
        return from_cents(self._query(sql, params)[0]['total'])

    def delete_distribution(self, distribution_id: int) -> None:
        with self.transaction() as conn:
            rows = conn.execute("SELECT waterfall_applied FROM distributions WHERE id = ?", (distribution_id,)).fetchall()
            if not rows:
                raise NotFoundError("Distribution", distribution_id)
            if rows[0]['waterfall_applied']:
                raise ConflictError(f"Distribution {distribution_id} has an applied waterfall and cannot be deleted")
            conn.execute("DELETE FROM distributions WHERE id = ?", (distribution_id,))
        logger.info(f"Deleted distribution {distribution_id}")

    def update_distribution(self, distribution_id: int, updates: Dict[str, Any]) -> Distribution:
        """Edit a Draft distribution; conditional on no waterfall having been applied"""
        with self.transaction() as conn:
            rows = conn.execute("SELECT * FROM distributions WHERE id = ?", (distribution_id,)).fetchall()
            if not rows:
                raise NotFoundError("Distribution", distribution_id)
            merged = merge_distribution_update(_row_to(Distribution, rows[0]), updates)

            values = {k: getattr(merged, k) for k in updates}
            n = _update(conn, 'distributions', distribution_id, values,
                        where="waterfall_applied = 0 AND status = ?", params=(DISTRIBUTION_DRAFT,))
            if n == 0:
                raise ConflictError(f"Distribution {distribution_id} can no longer be edited")
        logger.info(f"✅ Updated distribution {distribution_id}: {sorted(updates)}")
        return self.get_distribution(distribution_id)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def read_table(self, table_name: str) -> pd.DataFrame:
        """Whole table as a DataFrame (money columns left in cents)"""
        if table_name not in TABLE_DEFINITIONS:
            raise ValidationError(f"Unknown table: {table_name}")
        conn = self.get_db_connection()
        try:
            return pd.read_sql(f"SELECT * FROM {table_name}", conn)
        finally:
            conn.close()

    def export_table_to_csv(self, table_name: str, csv_path: str) -> Dict[str, Any]:
        """
        Export database table to CSV

        Returns:
            Dictionary with export results
        """
        df = self.read_table(table_name)
        df.to_csv(csv_path, index=False)

        logger.info(f"✅ Exported {table_name}: {len(df):,} rows to {csv_path}")

        return {
            'status': 'success',
            'table': table_name,
            'rows': len(df),
            'file': csv_path
        }
