"""
tests/test_cli.py -- Tests for the administrative commands in main.py.

The commands read AUTH_DB_URL through get_settings(); each test points the
cached Settings at its own in-memory database with monkeypatch. Passwords are
supplied through the prompt hook instead of getpass.

Coverage:
  - create-admin creates an admin account with a verifiable password
  - create-user defaults to salesperson and accepts --role unassigned
  - mismatched password confirmation creates nothing
  - form rules (email format, password length) apply to CLI accounts too
  - the password is stored exactly as typed, spaces included
  - duplicate email exits non-zero and keeps one row
  - purge-sessions removes expired sessions
"""

from __future__ import annotations

import pytest

import main
from auth.credentials import verify_password
from auth.models import Identity, Role
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings

ADMIN_ARGS = ["create-admin", "--email", "Root@AutoLot.io", "--first-name", "Rita", "--last-name", "Root"]


def _prompt(*answers: str):
    replies = iter(answers)
    return lambda _label: next(replies)


@pytest.fixture
def db_url(request, monkeypatch) -> str:
    url = f"sqlite:///file:cli_{request.node.name}?mode=memory&cache=shared&uri=true"
    monkeypatch.setattr(get_settings(), "auth_db_url", url)
    return url


@pytest.fixture
def users(db_url):
    # Holding a connection open keeps the shared in-memory database alive
    # between the command's own store instances.
    store = UserStore(db_url)
    yield store
    store.close()


def test_create_admin(users: UserStore) -> None:
    assert main.main(ADMIN_ARGS, prompt=_prompt("admin-pass-1", "admin-pass-1")) == 0
    admin = users.get_by_email("root@autolot.io")
    assert admin is not None
    assert admin.role is Role.ADMIN
    assert verify_password("admin-pass-1", admin.hashed_password)


def test_create_user_defaults_to_salesperson(users: UserStore) -> None:
    args = ["create-user", "--email", "sal@autolot.io", "--first-name", "Sal", "--last-name", "Vega"]
    assert main.main(args, prompt=_prompt("sales-pass-1", "sales-pass-1")) == 0
    assert users.get_by_email("sal@autolot.io").role is Role.SALESPERSON


def test_create_user_unassigned(users: UserStore) -> None:
    args = ["create-user", "--role", "unassigned", "--email", "u@autolot.io", "--first-name", "U", "--last-name", "N"]
    assert main.main(args, prompt=_prompt("plain-pass-1", "plain-pass-1")) == 0
    assert users.get_by_email("u@autolot.io").role is Role.UNASSIGNED


def test_create_user_rejects_admin_role_choice(users: UserStore) -> None:
    args = ["create-user", "--role", "admin", "--email", "x@autolot.io", "--first-name", "X", "--last-name", "Y"]
    with pytest.raises(SystemExit):
        main.main(args, prompt=_prompt("whatever-1", "whatever-1"))


def test_password_mismatch_creates_nothing(users: UserStore, capsys) -> None:
    assert main.main(ADMIN_ARGS, prompt=_prompt("admin-pass-1", "admin-pass-2")) == 1
    assert users.get_by_email("root@autolot.io") is None
    assert "do not match" in capsys.readouterr().out


def test_field_rules_apply(users: UserStore, capsys) -> None:
    args = ["create-admin", "--email", "nope", "--first-name", "A", "--last-name", "B"]
    assert main.main(args, prompt=_prompt("short", "short")) == 1
    out = capsys.readouterr().out
    assert "email" in out
    assert "password" in out
    assert not users.has_users()


def test_duplicate_email(users: UserStore, capsys) -> None:
    assert main.main(ADMIN_ARGS, prompt=_prompt("admin-pass-1", "admin-pass-1")) == 0
    assert main.main(ADMIN_ARGS, prompt=_prompt("admin-pass-1", "admin-pass-1")) == 1
    assert users.count_by_email("root@autolot.io") == 1
    assert "already exists" in capsys.readouterr().out


def test_purge_sessions(db_url: str, users: UserStore, capsys) -> None:
    expired = SessionStore(db_url, ttl_seconds=-1)
    try:
        expired.create(Identity(user_id=1, display_name="Old Session", role=Role.ADMIN))
        assert main.main(["purge-sessions"]) == 0
        assert "Removed 1 expired session(s)." in capsys.readouterr().out
        assert expired.count_for_user(1) == 0
    finally:
        expired.close()


def test_password_kept_as_typed(users: UserStore) -> None:
    assert main.main(ADMIN_ARGS, prompt=_prompt(" admin-pass-1 ", " admin-pass-1 ")) == 0
    admin = users.get_by_email("root@autolot.io")
    assert verify_password(" admin-pass-1 ", admin.hashed_password)
    assert not verify_password("admin-pass-1", admin.hashed_password)
