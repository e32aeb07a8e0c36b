"""
access.py
Role-based access checks

Permission model:
- Root (0): full access
- Admin (1): manages structures it created or is assigned to
- Support (2): reads everything, edits nothing structural
- Investor (3): no access to manager operations
- Guest (4): read-only
"""

import logging
from typing import Iterable, List, Optional

from config import ROLE_ADMIN, ROLE_GUEST, ROLE_NAMES, ROLE_ROOT, ROLE_SUPPORT
from errors import AccessDeniedError
from models import User

logger = logging.getLogger(__name__)

READ_ALL_ROLES = (ROLE_ROOT, ROLE_SUPPORT, ROLE_GUEST)


def require_investment_manager_access(user: Optional[User]) -> None:
    """Block investors, guests and anonymous callers"""
    if user is None or user.role not in (ROLE_ROOT, ROLE_ADMIN, ROLE_SUPPORT):
        role = ROLE_NAMES.get(getattr(user, 'role', None), "Unknown")
        logger.warning(f"⚠️  Manager access denied for {getattr(user, 'id', None)} ({role})")
        raise AccessDeniedError(
            "Access denied. This operation is only available to Root, Admin, and Support users."
        )


def require_root_access(user: Optional[User]) -> None:
    if user is None or user.role != ROLE_ROOT:
        raise AccessDeniedError("Access denied. This operation is only available to Root users.")


def _creator_of(item) -> Optional[str]:
    if isinstance(item, dict):
        return item.get("created_by") or item.get("user_id")
    return getattr(item, "created_by", None)


def can_edit_structure(user: Optional[User], structure, assigned_ids: Iterable[int] = ()) -> bool:
    """
    Root edits anything; Admin edits structures it created or is assigned to.
    Support, Investor and Guest never edit.
    """
    if user is None:
        return False
    if user.role == ROLE_ROOT:
        return True
    if user.role == ROLE_ADMIN:
        return _creator_of(structure) == user.id or getattr(structure, "id", None) in set(assigned_ids)
    return False


def require_structure_edit(user: Optional[User], structure, assigned_ids: Iterable[int] = ()) -> None:
    if not can_edit_structure(user, structure, assigned_ids):
        raise AccessDeniedError(
            f"Access denied. User {getattr(user, 'id', None)} cannot modify structure {getattr(structure, 'id', None)}"
        )


def filter_by_role(items: List, user: Optional[User]) -> List:
    """
    Items visible to a user in list views

    Root, Support and Guest see everything; Admin sees only what it
    created; Investors and unknown roles see nothing.
    """
    if user is None:
        return []
    if user.role in READ_ALL_ROLES:
        return list(items)
    if user.role == ROLE_ADMIN:
        return [i for i in items if _creator_of(i) == user.id]
    return []
