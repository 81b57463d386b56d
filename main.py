#!/usr/bin/env python3
"""
CarLot -- administrative command line.

Admin accounts cannot be self-registered over HTTP; they are issued here by
someone with access to the server and its environment.

Usage:
  python main.py create-admin --email ada@autolot.io --first-name Ada --last-name Byron
  python main.py create-user --role salesperson --email sam@autolot.io --first-name Sam --last-name Ortiz
  python main.py purge-sessions

The password is always prompted for (twice), never taken from argv, so it
does not end up in shell history or the process list.

Environment variables:
  AUTH_DB_URL   Auth database (users + sessions). Defaults to auth/carlot_auth.db.
  SECRET_KEY    Required unless DEBUG=true. Must match the running server so
                purge-sessions and the server agree on session keys.
"""

import argparse
import getpass
import sys
from typing import Callable, Optional

from auth.credentials import hash_password
from auth.models import Role, User
from auth.sessions import SessionStore
from auth.store import DEFAULT_DB_URL, UserStore
from core.config import get_settings
from core.errors import ConflictError, ValidationError
from web.forms import RegistrationForm, parse_form


def _auth_db_url() -> str:
    return get_settings().auth_db_url or DEFAULT_DB_URL


def _prompt_password(prompt: Callable[[str], str]) -> Optional[str]:
    first = prompt("Password: ")
    if first != prompt("Confirm password: "):
        print("  [!] Passwords do not match.")
        return None
    return first


def create_account(args: argparse.Namespace, role: Role, prompt: Callable[[str], str] = getpass.getpass) -> int:
    """Create one account with the given role. Returns a process exit code."""
    password = _prompt_password(prompt)
    if password is None:
        return 1
    # Same field rules as the registration form. The role is applied after
    # validation because the form refuses admin.
    try:
        form = parse_form(
            RegistrationForm,
            {
                "first_name": args.first_name,
                "last_name": args.last_name,
                "email": args.email,
                "password": password,
            },
        )
    except ValidationError as exc:
        for field_name, message in exc.field_errors.items():
            print(f"  [!] {field_name}: {message}")
        return 1

    store = UserStore(_auth_db_url())
    try:
        user_id = store.create_user(
            User(
                first_name=form.first_name,
                last_name=form.last_name,
                email=form.email,
                hashed_password=hash_password(form.password),
                role=role,
            )
        )
    except ConflictError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        store.close()

    print(f"  Created {role.value} account {form.email} (id {user_id}).")
    return 0


def purge_sessions(args: argparse.Namespace) -> int:
    store = SessionStore(_auth_db_url())
    try:
        removed = store.purge_expired()
    finally:
        store.close()
    print(f"  Removed {removed} expired session(s).")
    return 0


def _add_account_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--email", required=True, help="Login email (stored lower-cased)")
    parser.add_argument("--first-name", required=True, dest="first_name")
    parser.add_argument("--last-name", required=True, dest="last_name")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="main.py",
        description="CarLot administrative commands.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    admin = sub.add_parser("create-admin", help="Create an admin account")
    _add_account_arguments(admin)

    user = sub.add_parser("create-user", help="Create a staff or customer account")
    _add_account_arguments(user)
    user.add_argument(
        "--role",
        choices=[Role.SALESPERSON.value, Role.UNASSIGNED.value],
        default=Role.SALESPERSON.value,
        help="Role for the new account (default: salesperson)",
    )

    sub.add_parser("purge-sessions", help="Delete expired login sessions")
    return parser


def main(argv: Optional[list[str]] = None, prompt: Callable[[str], str] = getpass.getpass) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "create-admin":
        return create_account(args, Role.ADMIN, prompt)
    if args.command == "create-user":
        return create_account(args, Role(args.role), prompt)
    return purge_sessions(args)


if __name__ == "__main__":
    sys.exit(main())
