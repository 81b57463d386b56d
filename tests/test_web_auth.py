"""
tests/test_web_auth.py -- Integration tests for registration, login, logout
and session handling through the web routes.

Coverage:
  - Registration: 200 plain text, confirmation mail, role handling,
    duplicate email -> 400 with one row left, validation re-render,
    disabled registration -> 403, mail failure -> 500 after the user exists
  - Login: session cookie (httponly, samesite) + 303, Cache-Control no-store,
    unknown email and wrong password give the same 401 page
  - A password with surrounding spaces logs in exactly as registered
  - Logout: session row deleted, cookie cleared, old cookie is anonymous
  - Expired and forged session cookies are treated as anonymous
  - Each login is an independent session
"""

from __future__ import annotations

import pytest

from auth.models import Identity, Role
from auth.sessions import SessionStore
from core.config import get_settings

COOKIE = get_settings().session_cookie_name


def _registration(**overrides: str) -> dict[str, str]:
    data = {
        "first_name": "Priya",
        "last_name": "Natarajan",
        "email": "priya@autolot.io",
        "password": "hunter2hunter2",
        "role": "",
    }
    data.update(overrides)
    return data


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegister:
    def test_form_renders(self, client) -> None:
        resp = client.get("/register")
        assert resp.status_code == 200
        assert 'name="email"' in resp.text
        assert 'value="admin"' not in resp.text

    def test_register_success(self, client, harness) -> None:
        resp = client.post("/register", data=_registration(email="new.user@autolot.io"))
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert "Registration successful" in resp.text

        user = harness.user_store.get_by_email("new.user@autolot.io")
        assert user is not None
        assert user.role is Role.UNASSIGNED
        assert user.hashed_password != "hunter2hunter2"
        assert harness.mailer.sent[-1].email == "new.user@autolot.io"

    def test_register_as_salesperson(self, client, harness) -> None:
        resp = client.post("/register", data=_registration(email="seller@autolot.io", role="salesperson"))
        assert resp.status_code == 200
        assert harness.user_store.get_by_email("seller@autolot.io").role is Role.SALESPERSON

    def test_admin_role_rejected(self, client, harness) -> None:
        resp = client.post("/register", data=_registration(email="sneaky@autolot.io", role="admin"))
        assert resp.status_code == 400
        assert "Admin accounts cannot be self-registered." in resp.text
        assert harness.user_store.get_by_email("sneaky@autolot.io") is None

    def test_duplicate_email(self, client, harness) -> None:
        first = client.post("/register", data=_registration(email="twice@autolot.io"))
        second = client.post("/register", data=_registration(email="Twice@AutoLot.io", first_name="Other"))
        assert first.status_code == 200
        assert second.status_code == 400
        assert "already exists" in second.text
        assert harness.user_store.count_by_email("twice@autolot.io") == 1

    def test_invalid_input_rerenders_without_password(self, client, harness) -> None:
        resp = client.post("/register", data=_registration(email="bad-email", password="short"))
        assert resp.status_code == 400
        assert "Must be at least 8 characters." in resp.text
        assert 'value="Priya"' in resp.text
        assert 'value="short"' not in resp.text
        assert harness.user_store.get_by_email("bad-email") is None

    def test_disabled_registration_is_forbidden(self, client, harness, monkeypatch) -> None:
        monkeypatch.setattr(get_settings(), "self_registration_enabled", False)
        assert client.get("/register").status_code == 403
        resp = client.post("/register", data=_registration(email="closed@autolot.io"))
        assert resp.status_code == 403
        assert harness.user_store.get_by_email("closed@autolot.io") is None

    def test_mail_failure_is_500_but_account_exists(self, client, harness, monkeypatch) -> None:
        monkeypatch.setattr(harness.mailer, "fail", True)
        resp = client.post("/register", data=_registration(email="nomail@autolot.io"))
        assert resp.status_code == 500
        assert harness.user_store.get_by_email("nomail@autolot.io") is not None


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_form_renders(self, client) -> None:
        resp = client.get("/login")
        assert resp.status_code == 200
        assert 'name="password"' in resp.text

    def test_logged_in_user_is_redirected_from_form(self, as_role) -> None:
        resp = as_role(Role.SALESPERSON).get("/login")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"

    def test_login_success(self, client, harness) -> None:
        admin = harness.users[Role.ADMIN]
        resp = client.post("/login", data={"email": admin.email, "password": harness.password})
        assert resp.status_code == 303
        assert resp.headers["location"] == "/"
        assert resp.headers["cache-control"] == "no-store"

        set_cookie = resp.headers["set-cookie"].lower()
        assert f"{COOKIE}=" in set_cookie
        assert "httponly" in set_cookie
        assert "samesite=lax" in set_cookie

        # The client now carries the new session and may use admin pages.
        assert client.get("/add").status_code == 200

    def test_session_holds_identity_not_hash(self, client, harness) -> None:
        sales = harness.users[Role.SALESPERSON]
        client.post("/login", data={"email": sales.email.upper(), "password": harness.password})
        identity = harness.session_store.get_identity(client.cookies[COOKIE])
        assert identity == Identity(user_id=sales.id, display_name=sales.display_name, role=Role.SALESPERSON)

    def test_wrong_password_and_unknown_email_look_the_same(self, client, harness) -> None:
        admin = harness.users[Role.ADMIN]
        wrong = client.post("/login", data={"email": admin.email, "password": "not-the-password"})
        unknown = client.post("/login", data={"email": "ghost@autolot.io", "password": harness.password})
        assert wrong.status_code == unknown.status_code == 401
        assert "Invalid email or password." in wrong.text
        assert "Invalid email or password." in unknown.text
        assert COOKIE not in client.cookies

    def test_each_login_is_independent(self, client, harness) -> None:
        admin = harness.users[Role.ADMIN]
        client.post("/login", data={"email": admin.email, "password": harness.password})
        first = client.cookies[COOKIE]
        client.cookies.clear()
        client.post("/login", data={"email": admin.email, "password": harness.password})
        second = client.cookies[COOKIE]
        assert first != second
        harness.session_store.destroy(first)
        assert harness.session_store.get_identity(second) is not None

    def test_password_with_surrounding_spaces_logs_in_as_typed(self, client, harness) -> None:
        password = "  spaced-secret-9  "
        resp = client.post("/register", data=_registration(email="spaces@autolot.io", password=password))
        assert resp.status_code == 200

        login = client.post("/login", data={"email": "spaces@autolot.io", "password": password})
        assert login.status_code == 303
        client.cookies.clear()
        trimmed = client.post("/login", data={"email": "spaces@autolot.io", "password": password.strip()})
        assert trimmed.status_code == 401


# ---------------------------------------------------------------------------
# Logout and session expiry
# ---------------------------------------------------------------------------


class TestLogoutAndSessions:
    def test_logout_destroys_session(self, client, harness) -> None:
        admin = harness.users[Role.ADMIN]
        client.post("/login", data={"email": admin.email, "password": harness.password})
        token = client.cookies[COOKIE]

        resp = client.get("/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert harness.session_store.get_identity(token) is None

        # Replaying the old cookie is anonymous.
        client.cookies.clear()
        client.cookies.set(COOKIE, token)
        assert client.get("/add").status_code == 403

    def test_logout_when_anonymous_still_redirects(self, client) -> None:
        resp = client.get("/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"

    def test_expired_session_is_anonymous(self, client, harness) -> None:
        expired_store = SessionStore(harness.auth_url, ttl_seconds=-1)
        try:
            token = expired_store.create(Identity.from_user(harness.users[Role.ADMIN]))
        finally:
            expired_store.close()
        client.cookies.set(COOKIE, token)
        assert client.get("/add").status_code == 403
        assert harness.session_store.get_identity(token) is None

    def test_forged_cookie_is_anonymous(self, client) -> None:
        client.cookies.set(COOKIE, "definitely-not-a-session")
        assert client.get("/add").status_code == 403
        assert client.get("/").status_code == 200

    @pytest.mark.parametrize("role", [Role.ADMIN, Role.SALESPERSON, Role.UNASSIGNED])
    def test_nav_shows_display_name(self, as_role, harness, role) -> None:
        resp = as_role(role).get("/")
        assert harness.users[role].display_name in resp.text
        assert "/logout" in resp.text
