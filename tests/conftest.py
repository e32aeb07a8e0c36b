import pytest
from datetime import date
from decimal import Decimal

from database import LedgerStore
from services import FundService
from tiers import build_default_tiers
from waterfall import build_waterfall_state


@pytest.fixture
def store(tmp_path):
    """File-backed ledger in a temp directory"""
    s = LedgerStore(str(tmp_path / "ledger.db"))
    s.init_database()
    return s


@pytest.fixture
def service(store):
    return FundService(store)


@pytest.fixture
def fund(service):
    """Structure with the default 8% / 20% ladder and two investors (60/40 by commitment)"""
    structure = service.create_structure(
        "Test Fund I", "Fund", total_commitment=1_000_000, inception_date=date(2023, 1, 1)
    )
    service.add_investor(structure.id, "INV-A", "Alpha LP", commitment=600_000)
    service.add_investor(structure.id, "INV-B", "Beta LP", commitment=400_000)
    return structure


@pytest.fixture
def funded(service, fund):
    """fund with 1,000,000 called and paid on 2023-01-01"""
    call = service.create_capital_call(fund.id, "CC-001", 1_000_000, call_date=date(2023, 1, 1))
    service.send_capital_call(call.id, sent_date=date(2023, 1, 1))
    service.record_payment(call.id, 1_000_000, payment_date=date(2023, 1, 1))
    return fund


@pytest.fixture
def default_ladder():
    return build_default_tiers(1)


@pytest.fixture
def one_year_state():
    """1,000,000 contributed on 2023-01-01, nothing distributed yet"""
    return build_waterfall_state([(date(2023, 1, 1), Decimal("1000000"))], [])
