"""
auth/sessions.py -- Server-side session store.

One row per live session:
  token_hash   HMAC-SHA256(SECRET_KEY, cookie token), primary key
  user_id, display_name, role   the Identity, copied at login time
  created_at, expires_at        ISO 8601 UTC

Lifecycle:
  create()          login success -> new row, returns the raw token for the cookie
  get_identity()    lookup; an expired row is deleted on the spot and treated
                    as no session (lazy invalidation)
  destroy()         logout -> row deleted immediately
  purge_expired()   periodic sweep from the app lifespan and the CLI

TTL is fixed at creation; activity does not extend it. A user may hold any
number of sessions at once; each is independent.

Layer rule: no imports from api/, web/, inventory/, or notify/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine

from auth.models import Identity, Role
from auth.store import DEFAULT_DB_URL, make_engine
from auth.tokens import generate_session_token, hash_session_token
from core.config import get_settings

logger = logging.getLogger("carlot.auth.sessions")

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("token_hash", String(64), primary_key=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("display_name", String(201), nullable=False),
    Column("role", String(30), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    def __init__(self, db_url: str = DEFAULT_DB_URL, ttl_seconds: int | None = None) -> None:
        self.engine: Engine = make_engine(db_url)
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else get_settings().session_ttl_seconds
        _metadata.create_all(self.engine)

    def create(self, identity: Identity) -> str:
        """Bind identity to a fresh session and return the raw cookie token."""
        raw_token = generate_session_token()
        now = _utcnow()
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    token_hash=hash_session_token(raw_token),
                    user_id=identity.user_id,
                    display_name=identity.display_name,
                    role=identity.role.value,
                    created_at=now.isoformat(),
                    expires_at=(now + timedelta(seconds=self.ttl_seconds)).isoformat(),
                )
            )
            conn.commit()
        return raw_token

    def get_identity(self, raw_token: str | None) -> Identity | None:
        """Return the Identity for a cookie token, or None if absent or expired."""
        if not raw_token:
            return None
        token_hash = hash_session_token(raw_token)
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
            if row is None:
                return None
            if datetime.fromisoformat(row.expires_at) <= _utcnow():
                conn.execute(_sessions.delete().where(_sessions.c.token_hash == token_hash))
                conn.commit()
                return None
        return Identity(user_id=row.user_id, display_name=row.display_name, role=Role(row.role))

    def destroy(self, raw_token: str | None) -> bool:
        """Delete the session for this token. Returns True if a row was removed."""
        if not raw_token:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token_hash == hash_session_token(raw_token)))
            conn.commit()
        return result.rowcount > 0

    def purge_expired(self) -> int:
        """Delete every expired session. Returns the number removed."""
        # ISO 8601 strings in one fixed UTC offset sort chronologically.
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= _utcnow().isoformat()))
            conn.commit()
        if result.rowcount:
            logger.info("Purged %d expired session(s)", result.rowcount)
        return result.rowcount

    def count_for_user(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            rows = conn.execute(_sessions.select().where(_sessions.c.user_id == user_id)).fetchall()
        return len(rows)

    def close(self) -> None:
        self.engine.dispose()
