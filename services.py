"""
services.py
Fund ledger workflows over an injected store

FundService composes the pure engine modules (ownership, tiers, waterfall,
allocations, capital_calls, balances) with a LedgerStore.  When a user is
given every write is checked against the role model in access.py; without
one the caller is trusted (batch jobs, tests).
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from access import (filter_by_role, require_investment_manager_access,
                    require_structure_edit)
from allocations import build_capital_call_allocations, build_distribution_allocations
from balances import validate_distribution
from capital_calls import contributions_from_payments, new_capital_call
from config import (DEFAULT_CARRIED_INTEREST, DEFAULT_CURRENCY, DEFAULT_HURDLE_RATE,
                    DEFAULT_MANAGEMENT_FEE, DEFAULT_WATERFALL_TYPE, HUNDRED,
                    INVESTMENT_TYPES, ROLE_ROOT, ROLE_ADMIN, ROLE_SUPPORT,
                    STRUCTURE_TYPES)
from database import LedgerStore
from errors import AccessDeniedError, ConflictError, ValidationError
from metrics import investment_metrics
from models import (CapitalCall, CapitalCallAllocation, Distribution,
                    DistributionAllocation, Investment, InvestorMembership,
                    OwnershipShare, Structure, User, WaterfallResult,
                    WaterfallState, WaterfallTier)
from ownership import child_hierarchy_level, resolve_ownership, structure_lineage
from tiers import build_default_tiers, ladder_summary
from utils import as_date, to_decimal, to_money, to_percent
from waterfall import build_waterfall_state, run_waterfall

logger = logging.getLogger(__name__)


class FundService:
    """Orchestrates structures, ladders, capital calls and distributions"""

    def __init__(self, store: LedgerStore, user: Optional[User] = None):
        self.store = store
        self.user = user

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def _authorize_write(self, structure: Structure, structural: bool = False) -> None:
        """
        Root and owning/assigned Admins may write; assigned Support users may
        write non-structural records (calls, distributions, allocations).
        """
        if self.user is None:
            return
        require_investment_manager_access(self.user)
        assigned = self.store.get_admin_structure_ids(self.user.id)
        if self.user.role == ROLE_SUPPORT and not structural and structure.id in assigned:
            return
        require_structure_edit(self.user, structure, assigned)

    def _authorize_create_structure(self) -> None:
        if self.user is None:
            return
        require_investment_manager_access(self.user)
        if self.user.role not in (ROLE_ROOT, ROLE_ADMIN):
            raise AccessDeniedError("Access denied. Only Root and Admin users can create structures.")

    # ------------------------------------------------------------------
    # Structures
    # ------------------------------------------------------------------

    def create_structure(
        self,
        name: str,
        structure_type: str = "Fund",
        parent_structure_id: Optional[int] = None,
        total_commitment=0,
        management_fee=None,
        carried_interest=None,
        hurdle_rate=None,
        waterfall_type: str = DEFAULT_WATERFALL_TYPE,
        inception_date: Optional[date] = None,
        base_currency: str = DEFAULT_CURRENCY,
        create_default_ladder: bool = True,
    ) -> Structure:
        """
        Create a structure, optionally with the default four-tier ladder

        Raises:
            ValidationError: blank name, unknown type, nesting too deep
            NotFoundError: parent does not exist
        """
        self._authorize_create_structure()

        errors = []
        if not (name or "").strip():
            errors.append("Structure name is required")
        if structure_type not in STRUCTURE_TYPES:
            errors.append(f"Structure type must be one of {list(STRUCTURE_TYPES)}")
        if to_money(total_commitment) < 0:
            errors.append("Total commitment must not be negative")
        if errors:
            raise ValidationError("Invalid structure", errors)

        parent = self.store.get_structure(parent_structure_id) if parent_structure_id is not None else None
        level = child_hierarchy_level(parent)

        structure = Structure(
            id=None,
            name=name.strip(),
            structure_type=structure_type,
            parent_structure_id=parent_structure_id,
            hierarchy_level=level,
            total_commitment=to_money(total_commitment),
            management_fee=to_decimal(management_fee if management_fee is not None else DEFAULT_MANAGEMENT_FEE),
            carried_interest=to_decimal(carried_interest if carried_interest is not None else DEFAULT_CARRIED_INTEREST),
            hurdle_rate=to_decimal(hurdle_rate if hurdle_rate is not None else DEFAULT_HURDLE_RATE),
            waterfall_type=waterfall_type,
            inception_date=as_date(inception_date) if inception_date is not None else date.today(),
            base_currency=base_currency,
            created_by=self.user.id if self.user else None,
        )
        structure = self.store.create_structure(structure)

        if create_default_ladder:
            self.create_default_tiers(structure.id)
        return structure

    def get_structure(self, structure_id: int) -> Structure:
        return self.store.get_structure(structure_id)

    def list_structures(self) -> List[Structure]:
        structures = self.store.list_structures()
        if self.user is None:
            return structures
        return filter_by_role(structures, self.user)

    def get_child_structures(self, structure_id: int) -> List[Structure]:
        self.store.get_structure(structure_id)
        return self.store.list_child_structures(structure_id)

    def get_lineage(self, structure_id: int) -> List[Structure]:
        return structure_lineage(self.store.get_structure(structure_id), self.store.get_structure)

    def assign_admin(self, structure_id: int, user_id: str) -> None:
        structure = self.store.get_structure(structure_id)
        self._authorize_write(structure, structural=True)
        self.store.add_structure_admin(structure_id, user_id)

    def update_structure_financials(self, structure_id: int, **updates) -> Structure:
        structure = self.store.get_structure(structure_id)
        self._authorize_write(structure, structural=True)
        return self.store.update_structure_financials(structure_id, updates)

    def delete_structure(self, structure_id: int) -> None:
        """Delete a structure with everything beneath it"""
        structure = self.store.get_structure(structure_id)
        self._authorize_write(structure, structural=True)
        self.store.delete_structure(structure_id)

    # ------------------------------------------------------------------
    # Investors & ownership
    # ------------------------------------------------------------------

    def add_investor(
        self,
        structure_id: int,
        investor_id: str,
        investor_name: str = "",
        commitment=0,
        ownership_percent=None,
    ) -> InvestorMembership:
        structure = self.store.get_structure(structure_id)
        self._authorize_write(structure)

        pct = to_percent(ownership_percent)
        errors = []
        if not str(investor_id or "").strip():
            errors.append("Investor ID is required")
        if to_money(commitment) < 0:
            errors.append("Commitment must not be negative")
        if pct is not None and (pct < 0 or pct > HUNDRED):
            errors.append("Ownership percent must be between 0 and 100")
        if errors:
            raise ValidationError("Invalid investor", errors)

        return self.store.add_investor(InvestorMembership(
            structure_id=structure_id,
            investor_id=str(investor_id).strip(),
            investor_name=investor_name,
            commitment=to_money(commitment),
            ownership_percent=pct,
        ))

    def get_ownership(self, structure_id: int) -> List[OwnershipShare]:
        self.store.get_structure(structure_id)
        return resolve_ownership(self.store.get_memberships(structure_id))

    # ------------------------------------------------------------------
    # Waterfall ladder
    # ------------------------------------------------------------------

    def create_default_tiers(self, structure_id: int, hurdle_rate=None, carried_interest=None) -> List[WaterfallTier]:
        """Persist the default ladder using the structure's own terms unless overridden"""
        structure = self.store.get_structure(structure_id)
        self._authorize_write(structure, structural=True)
        tiers = build_default_tiers(
            structure_id,
            hurdle_rate=hurdle_rate if hurdle_rate is not None else structure.hurdle_rate,
            carried_interest=carried_interest if carried_interest is not None else structure.carried_interest,
            created_by=self.user.id if self.user else structure.created_by,
        )
        return self.store.create_tiers(structure_id, tiers)

    def get_active_tiers(self, structure_id: int) -> List[WaterfallTier]:
        self.store.get_structure(structure_id)
        return self.store.get_tiers(structure_id, active_only=True)

    def replace_ladder(self, structure_id: int, tiers: List[WaterfallTier]) -> List[WaterfallTier]:
        """Deactivate the current ladder and insert tiers, atomically"""
        structure = self.store.get_structure(structure_id)
        self._authorize_write(structure, structural=True)
        for t in tiers:
            t.structure_id = structure_id
            t.id = None
            t.is_active = True
        return self.store.create_tiers(structure_id, tiers, replace=True)

    def update_tier(self, tier_id: int, **updates) -> WaterfallTier:
        tier = self.store.get_tier(tier_id)
        self._authorize_write(self.store.get_structure(tier.structure_id), structural=True)
        return self.store.update_tier(tier_id, updates)

    def bulk_update_tiers(self, updates: List[Dict[str, Any]]) -> List[WaterfallTier]:
        """Each update dict carries the tier 'id' plus the fields to change"""
        by_id: Dict[int, Dict[str, Any]] = {}
        for u in updates:
            if u.get("id") is None:
                raise ValidationError("Every tier update needs an id")
            by_id[u["id"]] = {k: v for k, v in u.items() if k != "id"}
        for tier_id in by_id:
            tier = self.store.get_tier(tier_id)
            self._authorize_write(self.store.get_structure(tier.structure_id), structural=True)
        return self.store.update_tiers(by_id)

    def deactivate_ladder(self, structure_id: int) -> int:
        structure = self.store.get_structure(structure_id)
        self._authorize_write(structure, structural=True)
        return self.store.deactivate_all_tiers(structure_id)

    def get_waterfall_summary(self, structure_id: int) -> dict:
        return ladder_summary(structure_id, self.get_active_tiers(structure_id))

    # ------------------------------------------------------------------
    # Investments
    # ------------------------------------------------------------------

    def create_investment(
        self,
        structure_id: int,
        investment_name: str,
        investment_type: str = "EQUITY",
        investment_date: Optional[date] = None,
        **amounts,
    ) -> Investment:
        structure = self.store.get_structure(structure_id)
        self._authorize_write(structure)
        if investment_type not in INVESTMENT_TYPES:
            raise ValidationError(f"Investment type must be one of {list(INVESTMENT_TYPES)}")
        if not (investment_name or "").strip():
            raise ValidationError("Investment name is required")

        values = {k: (to_percent(v) if k == 'interest_rate' else to_money(v)) for k, v in amounts.items()}
        if 'principal_provided' in values and 'outstanding_principal' not in values:
            values['outstanding_principal'] = values['principal_provided']

        inv = Investment(
            id=None,
            structure_id=structure_id,
            investment_name=investment_name.strip(),
            investment_type=investment_type,
            investment_date=as_date(investment_date) if investment_date is not None else date.today(),
            **values,
        )
        return self.store.create_investment(inv)

    def mark_investment_exited(self, investment_id: int, exit_value=None, exit_date: Optional[date] = None) -> Investment:
        inv = self.store.get_investment(investment_id)
        self._authorize_write(self.store.get_structure(inv.structure_id))
        return self.store.mark_investment_exited(investment_id, exit_value, exit_date)

    def update_performance_metrics(self, investment_id: int, as_of_date: Optional[date] = None) -> Investment:
        """Recompute IRR and MOIC from the investment's dated cash flows"""
        inv = self.store.get_investment(investment_id)
        self._authorize_write(self.store.get_structure(inv.structure_id))
        as_of = as_date(as_of_date) if as_of_date is not None else date.today()
        m = investment_metrics(inv, self.store.get_investment_receipts(investment_id), as_of)
        values = {
            'irr_percent': None if m['irrPercent'] is None else Decimal(str(round(m['irrPercent'], 4))),
            'moic': Decimal(str(round(m['moic'], 4))),
        }
        logger.info(f"Investment {investment_id} metrics: {m}")
        return self.store.update_investment(investment_id, values)

    def list_investments(self, structure_id: int) -> List[Investment]:
        self.store.get_structure(structure_id)
        return self.store.list_investments(structure_id)

    # ------------------------------------------------------------------
    # Capital calls
    # ------------------------------------------------------------------

    def create_capital_call(
        self,
        structure_id: int,
        call_number,
        total_call_amount,
        call_date: Optional[date] = None,
        due_date: Optional[date] = None,
        investment_id: Optional[int] = None,
        purpose: str = "",
        notes: str = "",
        create_allocations: bool = False,
    ) -> CapitalCall:
        structure = self.store.get_structure(structure_id)
        self._authorize_write(structure)
        if investment_id is not None:
            self.store.get_investment(investment_id)

        call = new_capital_call(
            structure_id, call_number, total_call_amount,
            call_date=call_date, due_date=due_date, investment_id=investment_id,
            purpose=purpose, notes=notes,
            created_by=self.user.id if self.user else None,
        )
        call = self.store.create_capital_call(call)

        if create_allocations:
            self.create_capital_call_allocations(call.id)
        return call

    def send_capital_call(self, call_id: int, sent_date: Optional[date] = None) -> CapitalCall:
        call = self.store.get_capital_call(call_id)
        self._authorize_write(self.store.get_structure(call.structure_id))
        return self.store.mark_capital_call_sent(call_id, sent_date)

    def record_payment(self, call_id: int, amount, payment_date: Optional[date] = None) -> CapitalCall:
        call = self.store.get_capital_call(call_id)
        self._authorize_write(self.store.get_structure(call.structure_id))
        return self.store.record_capital_call_payment(call_id, amount, payment_date)

    def mark_capital_call_paid(self, call_id: int, payment_date: Optional[date] = None) -> CapitalCall:
        """Settle whatever is still unpaid in one payment"""
        call = self.store.get_capital_call(call_id)
        if call.total_unpaid_amount <= 0:
            raise ConflictError(f"Capital call {call_id} is already paid")
        return self.record_payment(call_id, call.total_unpaid_amount, payment_date)

    def create_capital_call_allocations(self, call_id: int) -> List[CapitalCallAllocation]:
        call = self.store.get_capital_call(call_id)
        self._authorize_write(self.store.get_structure(call.structure_id))
        shares = self.get_ownership(call.structure_id)
        if not shares:
            logger.warning(f"⚠️  Structure {call.structure_id} has no investors; no allocations for call {call_id}")
            return []
        return self.store.create_capital_call_allocations(call_id, build_capital_call_allocations(call, shares))

    def update_capital_call(self, call_id: int, **updates) -> CapitalCall:
        """
        Edit a Draft call before it is sent or paid

        Raises:
            ConflictError: call sent, paid, or amount change with allocations
            ValidationError: unknown fields or invalid values
        """
        call = self.store.get_capital_call(call_id)
        self._authorize_write(self.store.get_structure(call.structure_id))
        if updates.get("investment_id") is not None:
            self.store.get_investment(updates["investment_id"])
        if not updates:
            return call
        return self.store.update_capital_call(call_id, updates)

    def delete_capital_call(self, call_id: int) -> None:
        call = self.store.get_capital_call(call_id)
        self._authorize_write(self.store.get_structure(call.structure_id))
        self.store.delete_capital_call(call_id)

    # ------------------------------------------------------------------
    # Distributions
    # ------------------------------------------------------------------

    def create_distribution(
        self,
        structure_id: int,
        distribution_number,
        total_amount,
        distribution_date: Optional[date] = None,
        investment_id: Optional[int] = None,
        source: str = "",
        notes: str = "",
        source_equity_gain=0,
        source_debt_interest=0,
        source_debt_principal=0,
        source_other=0,
    ) -> Distribution:
        """
        Create a Draft distribution with empty tier amounts

        Raises:
            ValidationError: non-positive amount or negative source breakdown
        """
        structure = self.store.get_structure(structure_id)
        self._authorize_write(structure)
        if investment_id is not None:
            self.store.get_investment(investment_id)

        dist = Distribution(
            id=None,
            structure_id=structure_id,
            distribution_number=str(distribution_number or "").strip(),
            distribution_date=as_date(distribution_date) if distribution_date is not None else date.today(),
            total_amount=to_money(total_amount),
            investment_id=investment_id,
            source=source,
            notes=notes,
            source_equity_gain=to_money(source_equity_gain),
            source_debt_interest=to_money(source_debt_interest),
            source_debt_principal=to_money(source_debt_principal),
            source_other=to_money(source_other),
            created_by=self.user.id if self.user else None,
        )
        errors = validate_distribution(dist)
        if errors:
            raise ValidationError("Invalid distribution", errors)
        return self.store.create_distribution(dist)

    def update_distribution(self, distribution_id: int, **updates) -> Distribution:
        """
        Edit a Draft distribution before its waterfall is applied

        Raises:
            ConflictError: waterfall applied or distribution paid
            ValidationError: unknown fields or invalid values
        """
        dist = self.store.get_distribution(distribution_id)
        self._authorize_write(self.store.get_structure(dist.structure_id))
        if updates.get("investment_id") is not None:
            self.store.get_investment(updates["investment_id"])
        if not updates:
            return dist
        return self.store.update_distribution(distribution_id, updates)

    def delete_distribution(self, distribution_id: int) -> None:
        dist = self.store.get_distribution(distribution_id)
        self._authorize_write(self.store.get_structure(dist.structure_id))
        self.store.delete_distribution(distribution_id)

    def waterfall_state(self, structure: Structure, as_of: date,
                        exclude_distribution_id: Optional[int] = None) -> WaterfallState:
        """
        Cumulative LP position of a structure before a distribution

        Contributions come from the dated payment ledger.  A structure with
        no capital-call records at all (totals loaded through
        update_structure_financials) is treated as one contribution of
        total_called at inception.  Sent but unpaid calls contribute nothing.
        """
        contributions = contributions_from_payments(self.store.get_contributions(structure.id))
        if (not contributions and structure.total_called > 0
                and not self.store.list_capital_calls(structure.id)):
            start = structure.inception_date or as_of
            logger.warning(
                f"⚠️  Structure {structure.id} has no capital calls; "
                f"using total_called {structure.total_called} at {start}"
            )
            contributions = [(start, structure.total_called)]

        prior = self.store.get_prior_tier_lines(structure.id, exclude_distribution_id)
        return build_waterfall_state(contributions, prior)

    def management_fee_for(self, structure: Structure, total_amount) -> Decimal:
        return to_money(to_money(total_amount) * to_decimal(structure.management_fee) / HUNDRED)

    def _compute_waterfall(self, dist: Distribution, charge_management_fee: bool) -> WaterfallResult:
        structure = self.store.get_structure(dist.structure_id)
        tiers = self.store.get_tiers(structure.id, active_only=True)
        state = self.waterfall_state(structure, dist.distribution_date, exclude_distribution_id=dist.id)
        fee = self.management_fee_for(structure, dist.total_amount) if charge_management_fee else Decimal("0.00")
        return run_waterfall(
            dist.total_amount,
            tiers,
            state,
            dist.distribution_date,
            management_fee=fee,
            hurdle_rate=structure.hurdle_rate,
        )

    def preview_waterfall(self, distribution_id: int, charge_management_fee: bool = False) -> WaterfallResult:
        """Run the waterfall for a distribution without persisting anything"""
        return self._compute_waterfall(self.store.get_distribution(distribution_id), charge_management_fee)

    def apply_waterfall(self, distribution_id: int, charge_management_fee: bool = False) -> WaterfallResult:
        """
        Allocate a distribution across the ladder and persist it once

        Raises:
            NotFoundError: unknown distribution
            ConflictError: waterfall already applied
            ValidationError: no ladder / invalid ladder
        """
        dist = self.store.get_distribution(distribution_id)
        self._authorize_write(self.store.get_structure(dist.structure_id))

        computed: List[WaterfallResult] = []

        def compute(locked: Distribution) -> WaterfallResult:
            result = self._compute_waterfall(locked, charge_management_fee)
            computed.append(result)
            return result

        self.store.apply_waterfall(distribution_id, compute)
        return computed[0]

    def mark_distribution_paid(self, distribution_id: int) -> Distribution:
        dist = self.store.get_distribution(distribution_id)
        self._authorize_write(self.store.get_structure(dist.structure_id))
        return self.store.mark_distribution_paid(distribution_id)

    def create_distribution_allocations(self, distribution_id: int) -> List[DistributionAllocation]:
        """Split the LP pool of an applied distribution across investors"""
        dist = self.store.get_distribution(distribution_id)
        self._authorize_write(self.store.get_structure(dist.structure_id))
        if not dist.waterfall_applied:
            raise ConflictError(f"Apply the waterfall to distribution {distribution_id} before allocating")
        shares = self.get_ownership(dist.structure_id)
        if not shares:
            logger.warning(f"⚠️  Structure {dist.structure_id} has no investors; no allocations for {distribution_id}")
            return []
        return self.store.create_distribution_allocations(
            distribution_id, build_distribution_allocations(dist, shares)
        )

    def investor_distribution_total(self, investor_id: str, structure_id: Optional[int] = None) -> Decimal:
        return self.store.investor_distribution_total(investor_id, structure_id)
