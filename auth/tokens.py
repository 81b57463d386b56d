"""
auth/tokens.py -- Session token generation, hashing, and the session cookie.

The browser holds an opaque random token; the sessions table holds
HMAC-SHA256(SECRET_KEY, token). A leaked database therefore cannot be replayed
as cookies without also knowing SECRET_KEY, and lookup stays O(1) because the
hash is deterministic. bcrypt's intentional slowness is unnecessary here:
secrets.token_urlsafe(32) carries 256 bits of entropy.

Layer rule: no imports from api/, web/, inventory/, or notify/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

from core.config import get_settings

_settings = get_settings()


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


def hash_session_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string."""
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()


def set_session_cookie(response, raw_token: str) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POSTs (CSRF mitigation for forms).
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the server-side session TTL so both expire together.
    """
    response.set_cookie(
        _settings.session_cookie_name,
        value=raw_token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.session_ttl_seconds,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(
        _settings.session_cookie_name,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
    )
