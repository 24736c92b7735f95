"""
auth/schema.py -- SQLAlchemy Core table definitions and engine factory.

The schema itself is owned by the deployment's migrations; these Table
objects describe the columns this package reads and writes. create_all() is
still called on startup so local and test databases come up empty but usable.

Constraints the code relies on:
  users.email UNIQUE -- duplicate signups and racing social first-logins
      fail at the database, not just in a pre-check.
  UNIQUE(provider, provider_id) -- one row per external identity. SQLite
      treats NULLs as distinct, so local accounts (provider_id NULL) never
      collide with each other.
  sessions.user_id ON DELETE CASCADE -- needs PRAGMA foreign_keys=ON, which
      _configure_sqlite() sets on every new connection.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("password_hash", Text),  # NULL for social-only users
    Column("name", String(100), nullable=False),
    Column("provider", String(30), nullable=False, server_default="email"),
    Column("provider_id", String(255)),
    Column("avatar_url", Text),
    Column("marketing_agree", Integer, nullable=False, server_default="0"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
    UniqueConstraint("provider", "provider_id", name="uq_users_provider_identity"),
)

Index("idx_users_status", users.c.status)

sessions = Table(
    "sessions",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("token", String(64), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
)

Index("idx_sessions_user_id", sessions.c.user_id)
Index("idx_sessions_expires_at", sessions.c.expires_at)


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Per-connection SQLite PRAGMAs.

    WAL lets readers proceed during writes; foreign_keys enables the
    sessions -> users cascade. PRAGMAs are not inherited by new pooled
    connections, so this runs on every connect.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_store_engine(db_url: str) -> Engine:
    """Build the shared engine for UserStore and SessionStore and ensure tables exist."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _configure_sqlite)
    metadata.create_all(engine)
    return engine
