"""
auth/identity.py -- Reconcile a social login with local user records.

find_or_create_social_user() resolution order:
  1. (provider, provider_id) already linked -> that user. The avatar is
     refreshed when the provider sends a new one; email and name are never
     changed here (the user may have edited their name).
  2. Same normalized email -> link the identity onto that row. Local "email"
     accounts and rows without a provider_id are linked. A row already bound
     to a different identity is NOT overwritten: IdentityConflictError.
  3. Otherwise create a password-less account.

Providers that withhold the email get a deterministic placeholder under the
reserved .invalid TLD (RFC 2606) that embeds the provider id, so the UNIQUE
email constraint holds and two provider users can never share one. A
placeholder skips step 2: it is only ever inserted, never looked up by email,
so a local signup can not pre-claim it (signup also refuses .invalid).

Concurrency: two first-time callbacks for the same identity can both reach
step 3. The loser's insert hits a unique constraint (DuplicateEmailError);
it re-reads instead of failing, so exactly one row exists and both callers
get the same user.
"""

from __future__ import annotations

import logging
import re

from auth.errors import DuplicateEmailError, IdentityConflictError, InternalError
from auth.models import User, UserPatch
from auth.store import UserStore, normalize_email

logger = logging.getLogger("doorman.auth.identity")

_LOCAL_PROVIDER = "email"
_SAFE_LOCAL_PART = re.compile(r"^[a-z0-9._-]+$")


def placeholder_email(provider: str, provider_id: str) -> str:
    """Synthesize a collision-free address for a provider that sent no email.

    Ids that are already lower-case-safe are used as-is. Anything else
    (mixed case, symbols) is hex-encoded behind a "hex+" marker, so
    normalization cannot fold two ids into one address and an encoded id
    never equals a plain one.
    """
    if _SAFE_LOCAL_PART.match(provider_id):
        local = provider_id
    else:
        local = "hex+" + provider_id.encode("utf-8").hex()
    return f"{local}@{provider}.invalid"


def _display_name(provider: str, provider_id: str, name: str | None, email: str | None) -> str:
    if name and name.strip():
        return name.strip()
    if email:
        return email.split("@", 1)[0]
    return f"{provider.capitalize()} user {provider_id[-4:]}"


class IdentityReconciler:
    def __init__(self, users: UserStore) -> None:
        self.users = users

    def find_or_create_social_user(
        self,
        provider: str,
        provider_id: str,
        email: str | None,
        name: str | None,
        avatar_url: str | None,
        email_verified: bool = False,
    ) -> User:
        # Step 1: returning user
        user = self.users.find_by_provider(provider, provider_id)
        if user is not None:
            return self._refresh_avatar(user, avatar_url)

        if not (email and email.strip()):
            return self._create_without_email(provider, provider_id, name, avatar_url)

        address = normalize_email(email)

        # Step 2: existing account with the same email
        user = self.users.find_by_email(address)
        if user is not None:
            return self._link(user, provider, provider_id, email_verified)

        # Step 3: brand-new account
        try:
            user_id = self.users.create_social(
                provider=provider,
                provider_id=provider_id,
                email=address,
                name=_display_name(provider, provider_id, name, email),
                avatar_url=avatar_url,
                email_verified=True,
            )
        except DuplicateEmailError:
            logger.info("Concurrent first login for %s identity; re-reading", provider)
            return self._reread(provider, provider_id, address, email_verified)

        logger.info("Created %s user %s", provider, user_id)
        return self._require(self.users.find_by_id(user_id))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _create_without_email(
        self, provider: str, provider_id: str, name: str | None, avatar_url: str | None
    ) -> User:
        # The placeholder is never matched by email: only this identity may own it.
        address = placeholder_email(provider, provider_id)
        try:
            user_id = self.users.create_social(
                provider=provider,
                provider_id=provider_id,
                email=address,
                name=_display_name(provider, provider_id, name, None),
                avatar_url=avatar_url,
                email_verified=False,
            )
        except DuplicateEmailError:
            user = self.users.find_by_provider(provider, provider_id)
            if user is not None:
                return user
            logger.warning("Placeholder address for a %s identity is held by another account", provider)
            raise IdentityConflictError(f"placeholder {address} is owned by a different row") from None

        logger.info("Created %s user %s without a provider email", provider, user_id)
        return self._require(self.users.find_by_id(user_id))

    def _link(self, user: User, provider: str, provider_id: str, email_verified: bool) -> User:
        if user.provider == provider and user.provider_id == provider_id:
            return self._require(self.users.find_by_id(user.id))
        if user.provider_id is not None or user.provider not in (_LOCAL_PROVIDER, provider):
            logger.warning(
                "Refusing to link %s identity onto user %s already linked to %s",
                provider,
                user.id,
                user.provider,
            )
            raise IdentityConflictError(f"email belongs to user {user.id} linked to {user.provider}")
        if not self.users.link_provider(user.id, provider, provider_id, email_verified=email_verified):
            # Linked by someone else between our read and this write.
            linked = self.users.find_by_provider(provider, provider_id)
            if linked is not None:
                return linked
            raise IdentityConflictError(f"user {user.id} was linked to another identity concurrently")
        logger.info("Linked %s identity onto existing user %s", provider, user.id)
        return self._require(self.users.find_by_id(user.id))

    def _reread(self, provider: str, provider_id: str, address: str, email_verified: bool) -> User:
        user = self.users.find_by_provider(provider, provider_id)
        if user is not None:
            return user
        user = self.users.find_by_email(address)
        if user is not None:
            return self._link(user, provider, provider_id, email_verified)
        raise InternalError("Social account creation conflicted but no matching row exists.")

    def _refresh_avatar(self, user: User, avatar_url: str | None) -> User:
        if not avatar_url or avatar_url == user.avatar_url:
            return user
        self.users.update_profile(user.id, UserPatch(avatar_url=avatar_url))
        user.avatar_url = avatar_url
        return user

    @staticmethod
    def _require(user: User | None) -> User:
        if user is None:
            raise InternalError("User row vanished after write.")
        return user
