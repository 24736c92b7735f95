"""
auth/sessions.py -- Server-side session records keyed by opaque ids.

A session is valid iff its expires_at is strictly in the future AND its owner's
status is "active". verify() is a pure read-then-check: it never extends a
session, and expired rows are not swept here. They are rejected on verify
and otherwise left for natural cleanup.

Failure policy:
  delete()      -- best effort. Logout must not fail because a row could not
                   be removed; errors are logged and swallowed.
  delete_all()  -- must succeed or raise. It runs on password change, and
                   silently leaving old sessions alive has security impact.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import Session, User
from auth.schema import sessions as _sessions
from auth.schema import users as _users
from auth.store import _PUBLIC_COLUMNS, _row_to_user
from auth.tokens import new_session_id

logger = logging.getLogger("doorman.auth.sessions")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Repository for Session entities.

    clock is injectable so tests can move "now" past an expiry without
    sleeping or rewriting rows.
    """

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = _utcnow) -> None:
        self.engine = engine
        self._clock = clock

    def create(
        self,
        user_id: int,
        ttl_days: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        """Persist a new session for user_id and return its opaque id."""
        now = self._clock()
        session_id = new_session_id()
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session_id,
                    user_id=user_id,
                    token=new_session_id(),
                    expires_at=(now + timedelta(days=ttl_days)).isoformat(),
                    ip_address=ip_address,
                    user_agent=user_agent,
                    created_at=now.isoformat(),
                )
            )
            conn.commit()
        return session_id

    def get(self, session_id: str) -> Session | None:
        """Return the raw session row, valid or not."""
        if not session_id:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def verify(self, session_id: str | None) -> User | None:
        """Resolve a session id to its owner's public projection, or None.

        None for: an empty id, an unknown id, expires_at <= now, or an owner
        whose status is not "active".
        """
        if not session_id:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(
                select(*_PUBLIC_COLUMNS, _sessions.c.expires_at)
                .select_from(_sessions.join(_users, _sessions.c.user_id == _users.c.id))
                .where(_sessions.c.id == session_id)
            ).fetchone()
        if row is None:
            return None
        if _parse_ts(row.expires_at) <= self._clock():
            return None
        user = _row_to_user(row)
        if not user.is_active:
            return None
        return user

    def delete(self, session_id: str | None) -> None:
        """Remove one session. Idempotent and best effort."""
        if not session_id:
            return
        try:
            with self.engine.connect() as conn:
                conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
                conn.commit()
        except SQLAlchemyError:
            logger.warning("Could not delete session", exc_info=True)

    def delete_all(self, user_id: int, conn: Connection | None = None) -> int:
        """Remove every session of user_id in one transaction. Returns the count.

        With conn the delete joins the caller's transaction (password change
        commits the new hash and the revocation together). Raises
        SQLAlchemyError on failure; the caller must not report success.
        """
        stmt = _sessions.delete().where(_sessions.c.user_id == user_id)
        if conn is not None:
            return conn.execute(stmt).rowcount
        with self.engine.begin() as own:
            result = own.execute(stmt)
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _parse_ts(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    # Rows written by other tools may lack an offset; they are UTC by convention.
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=_parse_ts(row.expires_at),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at,
    )
