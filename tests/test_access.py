import pytest

from access import (can_edit_structure, filter_by_role, require_investment_manager_access,
                    require_root_access)
from errors import AccessDeniedError
from models import Structure, User

ROOT = User("u-root", 0)
ADMIN = User("u-admin", 1)
OTHER_ADMIN = User("u-admin-2", 1)
SUPPORT = User("u-support", 2)
INVESTOR = User("u-investor", 3)
GUEST = User("u-guest", 4)


@pytest.mark.parametrize("user", [ROOT, ADMIN, SUPPORT])
def test_managers_allowed(user):
    require_investment_manager_access(user)


@pytest.mark.parametrize("user", [INVESTOR, GUEST, None])
def test_investors_and_guests_blocked(user):
    with pytest.raises(AccessDeniedError):
        require_investment_manager_access(user)


def test_root_only():
    require_root_access(ROOT)
    with pytest.raises(AccessDeniedError):
        require_root_access(ADMIN)


def test_edit_rights():
    s = Structure(id=10, name="F", created_by="u-admin")
    assert can_edit_structure(ROOT, s)
    assert can_edit_structure(ADMIN, s)
    assert not can_edit_structure(OTHER_ADMIN, s)
    assert can_edit_structure(OTHER_ADMIN, s, assigned_ids=[10])
    assert not can_edit_structure(SUPPORT, s, assigned_ids=[10])
    assert not can_edit_structure(GUEST, s)


def test_filter_by_role():
    items = [Structure(id=1, name="A", created_by="u-admin"), Structure(id=2, name="B", created_by="u-root")]
    assert len(filter_by_role(items, ROOT)) == 2
    assert len(filter_by_role(items, SUPPORT)) == 2
    assert len(filter_by_role(items, GUEST)) == 2
    assert [s.id for s in filter_by_role(items, ADMIN)] == [1]
    assert filter_by_role(items, INVESTOR) == []
    assert filter_by_role([{"created_by": "u-admin"}], ADMIN) == [{"created_by": "u-admin"}]
