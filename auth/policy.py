"""
auth/policy.py -- The authorization policy for every CarLot action.

decide() is a pure function of (identity, action): no store lookups, no
request state, no side effects. Every privileged route calls authorize() for
both the form-render and the form-submit half, so GET /update/{id} is gated
exactly like POST /update/{id}.

A missing identity is an ordinary input, not an error: it yields DENY for any
role-gated action and ALLOW for public ones.

Layer rule: no imports from api/, web/, inventory/, or notify/.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from auth.models import Identity, Role
from core.errors import AuthorizationError


class Action(str, Enum):
    VIEW_LISTING = "view_listing"
    VIEW_DETAIL = "view_detail"
    SEARCH = "search"
    ADD_VEHICLE = "add_vehicle"
    UPDATE_VEHICLE = "update_vehicle"
    MARK_PENDING_SALE = "mark_pending_sale"
    DELETE_VEHICLE = "delete_vehicle"
    REGISTER = "register"
    LOGIN = "login"
    LOGOUT = "logout"


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


# None means public: no identity required.
_REQUIRED_ROLES: dict[Action, Optional[frozenset[Role]]] = {
    Action.VIEW_LISTING: None,
    Action.VIEW_DETAIL: None,
    Action.SEARCH: None,
    Action.ADD_VEHICLE: frozenset({Role.ADMIN}),
    Action.UPDATE_VEHICLE: frozenset({Role.ADMIN, Role.SALESPERSON}),
    Action.MARK_PENDING_SALE: frozenset({Role.ADMIN, Role.SALESPERSON}),
    Action.DELETE_VEHICLE: frozenset({Role.ADMIN}),
    Action.REGISTER: None,
    Action.LOGIN: None,
    Action.LOGOUT: None,
}


def decide(identity: Optional[Identity], action: Action) -> Decision:
    """Return ALLOW or DENY for this identity attempting this action.

    Unknown actions are denied.
    """
    if action not in _REQUIRED_ROLES:
        return Decision.DENY
    required = _REQUIRED_ROLES[action]
    if required is None:
        return Decision.ALLOW
    if identity is None:
        return Decision.DENY
    return Decision.ALLOW if identity.role in required else Decision.DENY


def allowed(identity: Optional[Identity], action: Action) -> bool:
    """Boolean form of decide(), used by templates to show or hide controls."""
    return decide(identity, action) is Decision.ALLOW


def authorize(identity: Optional[Identity], action: Action) -> Optional[Identity]:
    """Raise AuthorizationError on DENY; return the identity otherwise."""
    if decide(identity, action) is Decision.DENY:
        raise AuthorizationError()
    return identity
