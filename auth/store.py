"""
auth/store.py -- SQLAlchemy Core persistence layer for users.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Services and route code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  The password hash is only selected by find_by_email(), the credential-check
  path. find_by_id() and every other read use the public projection, which
  replaces the hash with a has_password flag.

Email normalization:
  normalize_email() (strip + lower) runs before every write and every lookup,
  so lookups are case-insensitive and the UNIQUE(email) constraint also
  rejects case variants.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateEmailError, ValidationError
from auth.models import User, UserPatch
from auth.schema import users as _users

logger = logging.getLogger("doorman.auth.store")

# Columns that may not be cleared (set to None) through a UserPatch.
_NOT_NULL_FIELDS = {"name", "status", "marketing_agree", "email_verified"}
_BOOL_FIELDS = {"marketing_agree", "email_verified"}

_PUBLIC_COLUMNS = [
    _users.c.id,
    _users.c.email,
    _users.c.name,
    _users.c.provider,
    _users.c.provider_id,
    _users.c.avatar_url,
    _users.c.marketing_agree,
    _users.c.email_verified,
    _users.c.status,
    _users.c.created_at,
    _users.c.updated_at,
    _users.c.last_login_at,
    _users.c.password_hash.is_not(None).label("has_password"),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _patch_values(patch: UserPatch) -> dict:
    changes = patch.changes()
    if not changes:
        raise ValidationError("No fields to update.")
    cleared = sorted(k for k, v in changes.items() if v is None and k in _NOT_NULL_FIELDS)
    if cleared:
        raise ValidationError(f"These fields cannot be cleared: {', '.join(cleared)}.")
    for key in _BOOL_FIELDS & changes.keys():
        changes[key] = 1 if changes[key] else 0
    changes["updated_at"] = _now_iso()
    return changes


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        engine = create_store_engine("sqlite:///doorman.db")
        store = UserStore(engine)
        uid = store.create_local("Ann", "ann@example.com", hash_password("secret123"))
        user = store.find_by_id(uid)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def exists_by_email(self, email: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_users.c.id).where(_users.c.email == normalize_email(email)).limit(1)
            ).fetchone()
        return row is not None

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by normalized email, including the password hash.

        Only the login path should call this; everything else uses find_by_id().
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                select(*_PUBLIC_COLUMNS, _users.c.password_hash).where(_users.c.email == normalize_email(email))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. The credential is never selected."""
        with self.engine.connect() as conn:
            row = conn.execute(select(*_PUBLIC_COLUMNS).where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_provider(self, provider: str, provider_id: str) -> User | None:
        """Look up a user by (provider, provider_id). Returns None if no row is linked."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(*_PUBLIC_COLUMNS).where(
                    (_users.c.provider == provider) & (_users.c.provider_id == provider_id)
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_password_hash(self, user_id: int) -> str | None:
        """Return the stored hash for a password-change check, or None for social-only users."""
        with self.engine.connect() as conn:
            return conn.execute(select(_users.c.password_hash).where(_users.c.id == user_id)).scalar()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_local(self, name: str, email: str, password_hash: str, marketing_agree: bool = False) -> int:
        """Insert an email/password account and return its id.

        Raises DuplicateEmailError if the normalized email already exists,
        including when a concurrent signup won the race after the caller's
        exists_by_email() pre-check.
        """
        now = _now_iso()
        return self._insert(
            email=normalize_email(email),
            password_hash=password_hash,
            name=name.strip(),
            provider="email",
            marketing_agree=1 if marketing_agree else 0,
            email_verified=0,
            status="active",
            created_at=now,
            updated_at=now,
        )

    def create_social(
        self,
        provider: str,
        provider_id: str,
        email: str,
        name: str,
        avatar_url: str | None = None,
        email_verified: bool = True,
    ) -> int:
        """Insert a social-only account (no password) and return its id.

        Raises DuplicateEmailError on any unique violation (email or
        provider identity). IdentityReconciler treats that as "someone else
        created it first" and re-reads.
        """
        now = _now_iso()
        return self._insert(
            email=normalize_email(email),
            password_hash=None,
            name=name.strip(),
            provider=provider,
            provider_id=provider_id,
            avatar_url=avatar_url,
            marketing_agree=0,
            email_verified=1 if email_verified else 0,
            status="active",
            created_at=now,
            updated_at=now,
        )

    def _insert(self, **values) -> int:
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.insert().values(**values))
                conn.commit()
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise DuplicateEmailError() from exc

    def link_provider(self, user_id: int, provider: str, provider_id: str, email_verified: bool = False) -> bool:
        """Attach a social identity to an existing row that has none yet.

        The WHERE clause requires provider_id IS NULL, so a row that was
        linked in the meantime is never overwritten. email_verified is only
        ever raised to true here, never lowered.

        Returns True if the row was linked, False if it was already linked
        or does not exist.
        """
        values: dict = {"provider": provider, "provider_id": provider_id, "updated_at": _now_iso()}
        if email_verified:
            values["email_verified"] = 1
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.provider_id.is_(None)))
                .values(**values)
            )
            conn.commit()
        return result.rowcount > 0

    def update_profile(self, user_id: int, patch: UserPatch, conn: Connection | None = None) -> bool:
        """Apply a tri-state patch. updated_at is always refreshed.

        Raises ValidationError when the patch is empty or tries to clear a
        NOT NULL column. Returns True if a row was updated, False if user_id
        was not found. With conn the statement joins the caller's transaction
        and is not committed here.
        """
        stmt = _users.update().where(_users.c.id == user_id).values(**_patch_values(patch))
        if conn is not None:
            return conn.execute(stmt).rowcount > 0
        with self.engine.connect() as own:
            result = own.execute(stmt)
            own.commit()
        return result.rowcount > 0

    def touch_last_login(self, user_id: int) -> None:
        """Stamp last_login_at. Best effort: a failure is logged, never raised."""
        try:
            with self.engine.connect() as conn:
                conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=_now_iso()))
                conn.commit()
        except SQLAlchemyError:
            logger.warning("Could not update last_login_at for user %s", user_id, exc_info=True)


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        provider=row.provider,
        provider_id=row.provider_id,
        avatar_url=row.avatar_url,
        marketing_agree=bool(row.marketing_agree),
        email_verified=bool(row.email_verified),
        status=row.status,
        has_password=bool(row.has_password),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login_at=row.last_login_at,
        password_hash=getattr(row, "password_hash", None),
    )
