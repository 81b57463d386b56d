"""
auth/dependencies.py -- FastAPI Depends() helpers for session identity and policy.

current_identity() resolves the session cookie to an Identity (or None for an
anonymous visitor) once per request and caches it on request.state.

require(action) builds a dependency that resolves the identity and applies
auth.policy.authorize(). It runs before any form parsing, so a denied request
is answered with 403 without its input ever being validated.

    @router.post("/add")
    async def add_vehicle(request: Request, identity: Identity = Depends(require(Action.ADD_VEHICLE))): ...

Layer rule: no imports from web/, inventory/, or notify/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

from fastapi import Request

from auth.models import Identity
from auth.policy import Action, authorize
from auth.sessions import SessionStore
from core.config import get_settings
from core.timeouts import call_with_timeout

_MISSING = object()


async def current_identity(request: Request) -> Optional[Identity]:
    """Return the Identity bound to this request's session cookie, or None.

    An unknown, expired, or destroyed token resolves to None -- the request is
    simply anonymous. Store failures raise DependencyError.
    """
    cached = getattr(request.state, "identity", _MISSING)
    if cached is not _MISSING:
        return cached
    raw_token = request.cookies.get(get_settings().session_cookie_name)
    identity: Optional[Identity] = None
    if raw_token:
        sessions: SessionStore = request.app.state.session_store
        identity = await call_with_timeout(sessions.get_identity, raw_token)
    request.state.identity = identity
    return identity


def require(action: Action) -> Callable[[Request], Awaitable[Optional[Identity]]]:
    """Return a dependency that raises AuthorizationError unless action is allowed."""

    async def _dependency(request: Request) -> Optional[Identity]:
        identity = await current_identity(request)
        return authorize(identity, action)

    _dependency.__name__ = f"require_{action.value}"
    return _dependency
