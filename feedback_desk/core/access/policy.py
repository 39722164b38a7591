"""Role gate and ownership rules shared by every feedback operation.

A principal may observe or change a feedback record when it is an admin or
when it owns the record. Records without an owner predate user accounts and
are reachable by admins only.
"""
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, FrozenSet, Mapping, Optional

from feedback_desk.core.access.principal import Principal
from feedback_desk.core.repos.query import FeedbackQuery
from feedback_desk.core.services.errors import Forbidden, Unauthenticated


ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLES = (ROLE_USER, ROLE_ADMIN)

ADMIN_WRITABLE: FrozenSet[str] = frozenset({"status", "admin_response", "priority"})
OWNER_WRITABLE: FrozenSet[str] = frozenset({"subject", "message", "rating", "category"})


def require_principal(principal: Optional[Principal]) -> Principal:
    if principal is None:
        raise Unauthenticated("authentication_required")
    return principal


def require_role(principal: Optional[Principal], role: str) -> Principal:
    principal = require_principal(principal)
    if principal.role != role:
        raise Forbidden(f"{role}_access_required")
    return principal


def is_admin(principal: Principal) -> bool:
    return principal.role == ROLE_ADMIN


def can_access(principal: Principal, record: Mapping[str, Any]) -> bool:
    if is_admin(principal):
        return True
    owner_id = record.get("owner_id")
    return owner_id is not None and str(owner_id) == principal.id


def scope_query(principal: Principal, query: FeedbackQuery) -> FeedbackQuery:
    """Return ``query`` restricted to what ``principal`` may see."""
    principal = require_principal(principal)
    if is_admin(principal):
        return replace(query, owner_id=None)
    return replace(query, owner_id=principal.id)


def writable_fields(principal: Principal) -> FrozenSet[str]:
    return ADMIN_WRITABLE if is_admin(principal) else OWNER_WRITABLE


def filter_writable(principal: Principal, changes: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = writable_fields(principal)
    return {k: v for k, v in changes.items() if k in allowed and v is not None}
