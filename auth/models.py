"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost no logic). Dataclasses own
domain shape; stores and services do the work.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any


class _Unset:
    """Sentinel type for "field not supplied" in a UserPatch."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass
class User:
    """An identity record.

    password_hash is only populated by UserStore.find_by_email(), the lookup
    used for credential checks. Every other read path (find_by_id, session
    verification) leaves it None; has_password tells callers whether a local
    credential exists without exposing it.

    provider is "email" for accounts created through signup. Social accounts
    carry the provider tag and the provider's stable subject id.
    """

    email: str
    name: str
    id: int | None = None
    provider: str = "email"  # "email", "google", "kakao", "naver"
    provider_id: str | None = None
    avatar_url: str | None = None
    marketing_agree: bool = False
    email_verified: bool = False
    status: str = "active"
    has_password: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    last_login_at: str | None = None
    password_hash: str | None = field(default=None, repr=False)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def public_dict(self) -> dict:
        """Return the JSON-safe public projection. Never includes the credential."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "avatar_url": self.avatar_url,
            "provider": self.provider,
            "email_verified": self.email_verified,
        }


@dataclass
class Session:
    """A server-side authorization grant.

    id is the opaque bearer value handed to the client. token is a second,
    independent random value the schema requires to be unique; it is never
    sent to the client.
    """

    user_id: int
    id: str
    token: str
    expires_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class ProviderProfile:
    """Provider-independent result of an OAuth code exchange."""

    provider_id: str
    email: str | None = None
    name: str | None = None
    avatar_url: str | None = None
    email_verified: bool = False


@dataclass
class UserPatch:
    """Partial update for a user row with explicit tri-state fields.

    UNSET (the default) leaves a column untouched, None clears it, anything
    else sets it. UserStore.update_profile() rejects clearing NOT NULL columns.
    """

    name: Any = UNSET
    avatar_url: Any = UNSET
    marketing_agree: Any = UNSET
    email_verified: Any = UNSET
    status: Any = UNSET
    password_hash: Any = UNSET

    def changes(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not UNSET}
