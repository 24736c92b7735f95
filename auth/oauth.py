"""
auth/oauth.py -- Per-provider OAuth 2.0 strategies and the exchange client.

Each provider is a small strategy object: endpoints, scope, extra authorize
parameters, and parse_profile(), which maps the provider's own userinfo shape
onto ProviderProfile. Everything downstream (IdentityReconciler, sessions)
only ever sees ProviderProfile.

OAuthClient drives the authorization-code flow with Authlib's requests
integration (OAuth2Session):
  begin_auth()    -- authorization URL carrying a fresh random state nonce.
                     The caller binds the nonce to the browser with a
                     short-lived cookie before redirecting.
  complete_auth() -- compares the echoed state with the cookie value, then
                     exchanges the code and fetches the profile (two HTTP
                     calls, each with a bounded timeout).

Security notes:
  [H1] CSRF: state is checked BEFORE any outbound call. A missing or
       mismatching state raises StateMismatchError and the code is never
       exchanged. Comparison is byte-exact via hmac.compare_digest.

  [H2] Provider failures (HTTP errors, timeouts, OAuth error payloads, missing
       access token, missing subject id) all become ProviderError. The raw
       provider text goes to the log only.

Supported providers:
  google -- static endpoints, userinfo v2.
  kakao  -- static endpoints, /v2/user/me.
  naver  -- static endpoints, /v1/nid/me (resultcode "00" envelope).

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from urllib.parse import urlencode

import requests
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.requests_client import OAuth2Session

from auth.errors import ProviderError, StateMismatchError
from auth.models import ProviderProfile
from auth.tokens import new_state_token
from core.config import Settings

logger = logging.getLogger("doorman.auth.oauth")


@dataclass(frozen=True)
class AuthRequest:
    redirect_url: str
    state: str


# ---------------------------------------------------------------------------
# Provider strategies
# ---------------------------------------------------------------------------


class OAuthProvider:
    """Base strategy. Subclasses set the endpoints and implement parse_profile()."""

    name: str = ""
    label: str = ""
    authorize_url: str = ""
    token_url: str = ""
    profile_url: str = ""
    scope: str | None = None
    authorize_params: Mapping[str, str] = MappingProxyType({})
    # Naver expects the state value again on the token request.
    token_requires_state: bool = False

    def __init__(self, client_id: str, client_secret: str) -> None:
        self.client_id = client_id
        self.client_secret = client_secret

    def parse_profile(self, payload: dict) -> ProviderProfile:
        raise NotImplementedError


def _object(value, what: str) -> dict:
    """Return a nested payload object; absent means empty, any other type is malformed."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ProviderError(f"provider payload field {what} is not an object")
    return value


def _subject(value) -> str:
    if value is None or value == "":
        raise ProviderError("provider payload has no subject id")
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ProviderError("provider subject id is not a string or integer")
    return str(value)


def _text(value) -> str | None:
    return value if isinstance(value, str) and value else None


class GoogleProvider(OAuthProvider):
    name = "google"
    label = "Google"
    authorize_url = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url = "https://oauth2.googleapis.com/token"  # noqa: S105 -- URL, not a password
    profile_url = "https://www.googleapis.com/oauth2/v2/userinfo"
    scope = "openid email profile"
    authorize_params = MappingProxyType({"access_type": "offline", "prompt": "select_account"})

    def parse_profile(self, payload: dict) -> ProviderProfile:
        return ProviderProfile(
            provider_id=_subject(payload.get("id")),
            email=_text(payload.get("email")),
            name=_text(payload.get("name")),
            avatar_url=_text(payload.get("picture")),
            email_verified=bool(payload.get("verified_email", False)),
        )


class KakaoProvider(OAuthProvider):
    name = "kakao"
    label = "Kakao"
    authorize_url = "https://kauth.kakao.com/oauth/authorize"
    token_url = "https://kauth.kakao.com/oauth/token"  # noqa: S105
    profile_url = "https://kapi.kakao.com/v2/user/me"

    def parse_profile(self, payload: dict) -> ProviderProfile:
        account = _object(payload.get("kakao_account"), "kakao_account")
        profile = _object(account.get("profile"), "kakao_account.profile")
        # Kakao only discloses email when the user consented to that scope.
        verified = bool(account.get("is_email_valid", True) and account.get("is_email_verified", False))
        return ProviderProfile(
            provider_id=_subject(payload.get("id")),
            email=_text(account.get("email")),
            name=_text(profile.get("nickname")) or _text(account.get("name")),
            avatar_url=_text(profile.get("profile_image_url")),
            email_verified=verified,
        )


class NaverProvider(OAuthProvider):
    name = "naver"
    label = "Naver"
    authorize_url = "https://nid.naver.com/oauth2.0/authorize"
    token_url = "https://nid.naver.com/oauth2.0/token"  # noqa: S105
    profile_url = "https://openapi.naver.com/v1/nid/me"
    token_requires_state = True

    def parse_profile(self, payload: dict) -> ProviderProfile:
        if payload.get("resultcode") != "00":
            raise ProviderError(f"naver profile call returned resultcode {payload.get('resultcode')!r}")
        data = _object(payload.get("response"), "response")
        return ProviderProfile(
            provider_id=_subject(data.get("id")),
            email=_text(data.get("email")),
            name=_text(data.get("name")) or _text(data.get("nickname")),
            avatar_url=_text(data.get("profile_image")),
            # Naver's profile API carries no verification claim.
            email_verified=False,
        )


_PROVIDER_CLASSES: dict[str, type[OAuthProvider]] = {
    GoogleProvider.name: GoogleProvider,
    KakaoProvider.name: KakaoProvider,
    NaverProvider.name: NaverProvider,
}


# ---------------------------------------------------------------------------
# Exchange client
# ---------------------------------------------------------------------------


class OAuthClient:
    """Registry of enabled providers plus the begin/complete flow.

    session_factory builds the Authlib OAuth2Session for one flow step; tests
    substitute a fake to avoid network access.
    """

    def __init__(
        self,
        providers: dict[str, OAuthProvider],
        timeout: float = 10.0,
        session_factory=OAuth2Session,
    ) -> None:
        self.providers = providers
        self.timeout = timeout
        self._session_factory = session_factory

    @classmethod
    def from_settings(cls, cfg: Settings) -> OAuthClient:
        """Register only the providers with both client id and secret configured."""
        providers: dict[str, OAuthProvider] = {}
        for name, provider_cls in _PROVIDER_CLASSES.items():
            client_id = getattr(cfg, f"{name}_client_id")
            client_secret = getattr(cfg, f"{name}_client_secret")
            if client_id and client_secret:
                providers[name] = provider_cls(client_id, client_secret)
                logger.info("%s OAuth provider registered", provider_cls.label)
        return cls(providers, timeout=cfg.oauth_http_timeout)

    def enabled_providers(self) -> list[dict]:
        """Return [{"name", "label"}] for the login page's provider buttons."""
        return [{"name": p.name, "label": p.label} for p in self.providers.values()]

    def _provider(self, name: str) -> OAuthProvider:
        provider = self.providers.get(name)
        if provider is None:
            raise ProviderError(f"provider {name!r} is not enabled")
        return provider

    def _session(self, provider: OAuthProvider, redirect_uri: str):
        return self._session_factory(
            client_id=provider.client_id,
            client_secret=provider.client_secret,
            scope=provider.scope,
            redirect_uri=redirect_uri,
            token_endpoint_auth_method="client_secret_post",  # noqa: S106
        )

    def begin_auth(self, provider_name: str, redirect_uri: str) -> AuthRequest:
        provider = self._provider(provider_name)
        state = new_state_token()
        session = self._session(provider, redirect_uri)
        url, _ = session.create_authorization_url(provider.authorize_url, state=state, **provider.authorize_params)
        return AuthRequest(redirect_url=url, state=state)

    def complete_auth(
        self,
        provider_name: str,
        code: str | None,
        state: str | None,
        cookie_state: str | None,
        redirect_uri: str,
    ) -> ProviderProfile:
        """Validate state, exchange the code, and return the normalized profile."""
        if not state or not cookie_state or not hmac.compare_digest(state.encode(), cookie_state.encode()):
            raise StateMismatchError("state parameter missing or does not match the state cookie")
        provider = self._provider(provider_name)
        if not code:
            raise ProviderError("callback carried no authorization code")

        session = self._session(provider, redirect_uri)
        try:
            body = urlencode({"state": state}) if provider.token_requires_state else ""
            token = session.fetch_token(provider.token_url, code=code, body=body, timeout=self.timeout)
            if not token or not token.get("access_token"):
                raise ProviderError(f"{provider.name} token response has no access_token")
            resp = session.get(provider.profile_url, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (AuthlibBaseError, requests.RequestException, ValueError) as exc:
            raise ProviderError(f"{provider.name} exchange failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise ProviderError(f"{provider.name} profile payload is not an object")
        return provider.parse_profile(payload)
