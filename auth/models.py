"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in inventory/models.py -- dataclasses own domain shape; stores and routes do
the work.

User is the persisted account and carries the password hash. Identity is
what a session holds: id, display name, and role only. The hash never leaves
the auth store through a session.

Layer rule: no imports from api/, web/, inventory/, or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed set of account roles.

    unassigned accounts can log in but hold no privileged permission.
    Anonymous visitors have no role at all (no Identity).
    """

    ADMIN = "admin"
    SALESPERSON = "salesperson"
    UNASSIGNED = "unassigned"


@dataclass
class User:
    """A registered account.

    email is stored lower-cased and is unique at the database level.
    hashed_password is a bcrypt digest; plaintext is never persisted.
    """

    first_name: str
    last_name: str
    email: str
    hashed_password: str
    role: Role = Role.UNASSIGNED
    id: int | None = None
    created_at: str | None = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Identity:
    """The authenticated principal attached to a session."""

    user_id: int
    display_name: str
    role: Role

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(user_id=user.id, display_name=user.display_name, role=user.role)
