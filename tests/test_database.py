import csv
import pytest
from datetime import date
from decimal import Decimal

from database import LedgerStore, TABLE_DEFINITIONS
from errors import ConflictError, NotFoundError, ValidationError
from models import Structure

D = Decimal


def test_init_is_idempotent(store):
    assert store.init_database() == {name: 'ready' for name in TABLE_DEFINITIONS}


def test_structure_round_trip(store):
    s = store.create_structure(Structure(
        id=None, name="Round Trip", total_commitment=D("1234567.89"),
        hurdle_rate=D("7.5"), inception_date=date(2022, 2, 28),
    ))
    loaded = store.get_structure(s.id)
    assert loaded.total_commitment == D("1234567.89")
    assert loaded.hurdle_rate == D("7.5")
    assert loaded.inception_date == date(2022, 2, 28)
    assert loaded.parent_structure_id is None


def test_money_stored_as_cents(store, service, fund):
    df = store.read_table('structures')
    assert int(df.loc[df['id'] == fund.id, 'total_commitment'].iloc[0]) == 100_000_000


def test_delete_cascades(store, service, fund):
    call = service.create_capital_call(fund.id, "CC-001", 100)
    store.delete_structure(fund.id)
    with pytest.raises(NotFoundError):
        store.get_capital_call(call.id)
    assert store.get_tiers(fund.id, active_only=False) == []


def test_delete_applied_distribution_conflicts(store, service, funded):
    dist = service.create_distribution(funded.id, "D-001", 1_000, distribution_date=date(2024, 1, 1))
    service.apply_waterfall(dist.id)
    with pytest.raises(ConflictError):
        store.delete_distribution(dist.id)


def test_delete_paid_call_conflicts(store, service, fund):
    call = service.create_capital_call(fund.id, "CC-001", 100)
    service.record_payment(call.id, 10)
    with pytest.raises(ConflictError):
        store.delete_capital_call(call.id)


def test_apply_unknown_distribution(store):
    with pytest.raises(NotFoundError):
        store.apply_waterfall(99, lambda d: None)


def test_list_filters(store, service, fund):
    a = service.create_capital_call(fund.id, "CC-001", 100)
    service.create_capital_call(fund.id, "CC-002", 200)
    service.send_capital_call(a.id)
    assert [c.call_number for c in store.list_capital_calls(fund.id, status="Sent")] == ["CC-001"]
    assert len(store.list_capital_calls(fund.id)) == 2


def test_export_table_to_csv(store, service, fund, tmp_path):
    out_path = str(tmp_path / "tiers.csv")
    result = store.export_table_to_csv('waterfall_tiers', out_path)
    assert result['status'] == 'success'
    assert result['rows'] == 4

    with open(out_path, newline="") as fh:
        rows = list(csv.DictReader(fh))
    assert [r['tier_name'] for r in rows][0] == "Return of Capital"


def test_unknown_table_rejected(store):
    with pytest.raises(ValidationError):
        store.read_table('sqlite_master')


def test_separate_stores_share_file(tmp_path):
    path = str(tmp_path / "shared.db")
    first = LedgerStore(path)
    first.init_database()
    s = first.create_structure(Structure(id=None, name="Shared"))
    assert LedgerStore(path).get_structure(s.id).name == "Shared"
