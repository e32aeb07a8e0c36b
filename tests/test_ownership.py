import pytest
from decimal import Decimal

from errors import LedgerConsistencyError, NotFoundError, ValidationError
from models import InvestorMembership, Structure
from ownership import (check_ownership_total, child_hierarchy_level,
                       resolve_ownership, structure_lineage)
from models import OwnershipShare

D = Decimal


def member(inv, commitment=0, pct=None):
    return InvestorMembership(structure_id=1, investor_id=inv, commitment=D(commitment),
                              ownership_percent=None if pct is None else D(str(pct)))


def test_ownership_derived_from_commitments():
    result = resolve_ownership([member("B", 400_000), member("A", 600_000)])
    assert [(s.investor_id, s.ownership_percent) for s in result] == [("A", D(60)), ("B", D(40))]


def test_explicit_percentages_win():
    result = resolve_ownership([member("A", 900_000, 25), member("B", 100_000, 75)])
    assert {s.investor_id: s.ownership_percent for s in result} == {"A": D(25), "B": D(75)}


def test_mixed_memberships_fall_back_to_commitments():
    result = resolve_ownership([member("A", 500, 90), member("B", 500)])
    assert {s.investor_id: s.ownership_percent for s in result} == {"A": D(50), "B": D(50)}


def test_duplicate_rows_consolidated():
    result = resolve_ownership([member("A", pct=30), member("A", pct=20), member("B", pct=50)])
    assert len(result) == 2
    assert result[0].ownership_percent == D(50)


def test_empty_structure_has_no_owners():
    assert resolve_ownership([]) == []


def test_bad_total_is_fatal():
    with pytest.raises(LedgerConsistencyError):
        resolve_ownership([member("A", pct=60), member("B", pct=30)])


def test_no_commitments_is_fatal():
    with pytest.raises(LedgerConsistencyError):
        resolve_ownership([member("A"), member("B")])


def test_tolerance_allows_rounding():
    assert check_ownership_total([OwnershipShare("A", D("33.333")), OwnershipShare("B", D("66.666"))]) == D("99.999")


def test_hierarchy_levels():
    assert child_hierarchy_level(None) == 1
    parent = Structure(id=1, name="Parent", hierarchy_level=4)
    assert child_hierarchy_level(parent) == 5
    with pytest.raises(ValidationError):
        child_hierarchy_level(Structure(id=2, name="Deep", hierarchy_level=5))


def test_lineage_walks_to_root():
    by_id = {
        1: Structure(id=1, name="Fund"),
        2: Structure(id=2, name="SPV", parent_structure_id=1, hierarchy_level=2),
        3: Structure(id=3, name="Trust", parent_structure_id=2, hierarchy_level=3),
    }

    def lookup(i):
        if i not in by_id:
            raise NotFoundError("Structure", i)
        return by_id[i]

    assert [s.id for s in structure_lineage(by_id[3], lookup)] == [3, 2, 1]


def test_lineage_stops_on_cycle():
    a = Structure(id=1, name="A", parent_structure_id=2)
    b = Structure(id=2, name="B", parent_structure_id=1)
    chain = structure_lineage(a, {1: a, 2: b}.__getitem__)
    assert [s.id for s in chain] == [1, 2]
