"""
auth/credentials.py -- Password hashing and email/password authentication.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). Cost comes from
       Settings.bcrypt_rounds so production can raise the work factor and the
       test suite can lower it. Verification always goes through
       bcrypt.checkpw -- digests are never compared with ==.

  Account enumeration: authenticate_user() raises the same CredentialError,
       with the same message, for an unknown email and for a wrong password.
       Unknown emails are still checked against _DUMMY_HASH so both paths pay
       the same bcrypt cost and response time reveals nothing.

Layer rule: no imports from api/, web/, inventory/, or notify/. Import from
core/ is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import bcrypt

from core.config import get_settings
from core.errors import CredentialError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("carlot.auth")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Password hashing
#
# bcrypt only looks at the first 72 bytes of input. The registration form caps
# passwords at 72 bytes so nothing is silently truncated.
# ---------------------------------------------------------------------------

MAX_PASSWORD_BYTES = 72


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    salt = bcrypt.gensalt(rounds=rounds or _settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is a failed verification, not an exception.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Computed once at module load so the first failed login is not measurably
# faster than later ones.
_DUMMY_HASH: str = hash_password("carlot_timing_dummy")


# ---------------------------------------------------------------------------
# Authentication (constant-cost)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User:
    """Return the User whose email and password match.

    Raises CredentialError for every failure cause. Always runs bcrypt,
    whether or not the email exists.
    """
    user = store.get_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        raise CredentialError()
    if not verify_password(password, user.hashed_password):
        raise CredentialError()
    return user
