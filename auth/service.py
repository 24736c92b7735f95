"""
auth/service.py -- Account operations: signup, login, social login, logout,
profile and password update.

AuthService receives its collaborators explicitly (UserStore, SessionStore,
IdentityReconciler, Settings); there are no module-level store handles.
api/main.py builds one instance in lifespan and stores it on app.state.

Error policy:
  - Input is validated first, before any store access, and rejected with a
    specific ValidationError message.
  - Each public method runs its store work inside _store_boundary(), which
    logs any SQLAlchemyError with its traceback and re-raises it as a generic
    InternalError. Raw database errors never reach route handlers.
  - Side effects that are not part of the contract (last-login stamp, logout
    delete) are best effort inside the stores themselves.

Account enumeration: a wrong password for an existing account gets the same
generic message as any other credential failure, but an unknown email is
reported explicitly (suggestSignup) so users are steered to signup or social
login. That trade-off is a product decision.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import (
    AuthenticationError,
    DuplicateEmailError,
    ForbiddenError,
    InternalError,
    ValidationError,
)
from auth.identity import IdentityReconciler
from auth.models import UNSET, ProviderProfile, User, UserPatch
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import hash_password, verify_password
from core.config import Settings

logger = logging.getLogger("doorman.auth.service")

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# Social-login placeholder addresses live under this TLD.
_RESERVED_TLD = ".invalid"
_MIN_NAME = 2
_MIN_PASSWORD = 8
_MAX_PASSWORD = 128

_PROVIDER_LABELS = {"google": "Google", "kakao": "Kakao", "naver": "Naver"}


@dataclass
class LoginResult:
    user: User
    session_id: str
    ttl_days: int


@dataclass
class ProfileResult:
    user: User
    # Set when the password changed: every old session is gone and the caller
    # needs this one in its cookie.
    new_session_id: str | None = None
    ttl_days: int = 0


@contextmanager
def _store_boundary(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Store failure during %s", operation)
        raise InternalError(f"An error occurred during {operation}. Please try again later.") from exc


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_name(name: str | None) -> str:
    if not name or len(name.strip()) < _MIN_NAME:
        raise ValidationError(f"Name must be at least {_MIN_NAME} characters.")
    return name.strip()


def _check_password(password: str) -> None:
    if len(password) < _MIN_PASSWORD:
        raise ValidationError(f"Password must be at least {_MIN_PASSWORD} characters.")
    if len(password) > _MAX_PASSWORD:
        raise ValidationError(f"Password must be at most {_MAX_PASSWORD} characters.")


class AuthService:
    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        reconciler: IdentityReconciler,
        settings: Settings,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.reconciler = reconciler
        self.settings = settings

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    def signup(
        self,
        name: str | None,
        email: str | None,
        password: str | None,
        password_confirm: str | None,
        agree_terms: bool = False,
        agree_marketing: bool = False,
    ) -> int:
        """Create an email/password account and return its id."""
        if not name or not email or not password or not password_confirm:
            raise ValidationError("Please fill in all fields.")
        if not agree_terms:
            raise ValidationError("Please agree to the terms of service.")
        clean_name = _check_name(name)
        if not _EMAIL_RE.match(email.strip()) or email.strip().lower().endswith(_RESERVED_TLD):
            raise ValidationError("Please enter a valid email address.")
        _check_password(password)
        if password != password_confirm:
            raise ValidationError("Passwords do not match.")

        with _store_boundary("signup"):
            if self.users.exists_by_email(email):
                raise DuplicateEmailError()
            user_id = self.users.create_local(
                name=clean_name,
                email=email,
                password_hash=hash_password(password),
                marketing_agree=bool(agree_marketing),
            )
        logger.info("Signup complete for user %s", user_id)
        return user_id

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(
        self,
        email: str | None,
        password: str | None,
        keep_login: bool = False,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginResult:
        """Verify email/password and open a session.

        Order of checks: unknown account (401, suggestSignup), social-only
        account (403, isSocialLogin), inactive account (403), wrong password
        (401, generic).
        """
        if not email or not password:
            raise ValidationError("Please enter your email and password.")

        with _store_boundary("login"):
            user = self.users.find_by_email(email)
            if user is None:
                raise AuthenticationError("This email is not registered.", suggestSignup=True)
            if not user.password_hash:
                label = _PROVIDER_LABELS.get(user.provider, "social")
                raise ForbiddenError(
                    f"This account was registered with {label} login. Please use social login.",
                    isSocialLogin=True,
                    provider=user.provider,
                )
            if not user.is_active:
                raise ForbiddenError("This account cannot log in.")
            if not verify_password(password, user.password_hash):
                raise AuthenticationError("Invalid email or password.")

            ttl_days = self.settings.session_ttl_days_extended if keep_login else self.settings.session_ttl_days
            session_id = self.sessions.create(user.id, ttl_days, ip_address=ip_address, user_agent=user_agent)
            self.users.touch_last_login(user.id)

        user.password_hash = None
        return LoginResult(user=user, session_id=session_id, ttl_days=ttl_days)

    def social_login(
        self,
        provider: str,
        profile: ProviderProfile,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginResult:
        """Reconcile a provider profile with local users and open a session.

        Raises IdentityConflictError (from the reconciler) or ForbiddenError
        for a deactivated account.
        """
        with _store_boundary("social login"):
            user = self.reconciler.find_or_create_social_user(
                provider,
                profile.provider_id,
                profile.email,
                profile.name,
                profile.avatar_url,
                email_verified=profile.email_verified,
            )
            if not user.is_active:
                raise ForbiddenError("This account cannot log in.")
            ttl_days = self.settings.social_session_ttl_days
            session_id = self.sessions.create(user.id, ttl_days, ip_address=ip_address, user_agent=user_agent)
            self.users.touch_last_login(user.id)
        return LoginResult(user=user, session_id=session_id, ttl_days=ttl_days)

    def logout(self, session_id: str | None) -> None:
        self.sessions.delete(session_id)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def update_profile(
        self,
        user: User,
        name=UNSET,
        current_password: str | None = None,
        new_password: str | None = None,
        new_password_confirm: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ProfileResult:
        """Change the display name and/or password of the signed-in user.

        A user who already has a password must confirm the current one.
        Social-only users may set a first password. A password change ends
        every session of the user, then opens a fresh one for the caller.
        """
        if name is UNSET and not new_password:
            raise ValidationError("No fields to update.")
        patch = UserPatch()
        if name is not UNSET:
            patch.name = _check_name(name)
        if new_password:
            if new_password != new_password_confirm:
                raise ValidationError("New passwords do not match.")
            _check_password(new_password)
            if user.has_password and not current_password:
                raise ValidationError("Please enter your current password.")

        result = ProfileResult(user=user)
        with _store_boundary("profile update"):
            if new_password:
                if user.has_password:
                    stored = self.users.get_password_hash(user.id)
                    if not verify_password(current_password, stored):
                        raise ValidationError("Current password is incorrect.")
                patch.password_hash = hash_password(new_password)

            if not new_password:
                self.users.update_profile(user.id, patch)
            else:
                # New hash and session revocation commit together or not at all.
                with self.users.engine.begin() as conn:
                    self.users.update_profile(user.id, patch, conn=conn)
                    revoked = self.sessions.delete_all(user.id, conn=conn)
                logger.info("Password changed for user %s; %d session(s) revoked", user.id, revoked)
                result.ttl_days = self.settings.session_ttl_days
                result.new_session_id = self.sessions.create(
                    user.id, result.ttl_days, ip_address=ip_address, user_agent=user_agent
                )

            refreshed = self.users.find_by_id(user.id)
        if refreshed is None:
            raise InternalError("An error occurred during profile update. Please try again later.")
        result.user = refreshed
        return result
