"""
tests/conftest.py -- Shared test fixtures for Doorman.

This module provides:
  - FakeOAuthSessionFactory: stands in for Authlib's OAuth2Session so no test
    ever reaches a real provider; records every exchange it is asked to do
  - _make_test_engine(): isolated named shared-memory SQLite engine
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client / web_client: TestClient over the full asgi app
  - engine / user_store / session_store: direct store access for unit tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the TestClient fixtures because route handlers run in a thread pool.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
client fixture gets a fresh uuid-named database.

Environment must be set before any doorman import: get_settings() is cached
on first call and api.main reads it at import time.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from urllib.parse import urlencode

# CRITICAL: set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("PASSWORD_KDF_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')
# TestClient talks plain http://testserver; Secure cookies would never be sent back.
os.environ.setdefault("SECURE_COOKIES", "false")

import pytest
import requests
from fastapi.testclient import TestClient

from asgi import app
from auth.identity import IdentityReconciler
from auth.oauth import GoogleProvider, KakaoProvider, NaverProvider, OAuthClient
from auth.schema import create_store_engine
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings

# ---------------------------------------------------------------------------
# Fake OAuth HTTP
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, payload, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} from fake provider")

    def json(self):
        return self._payload


class FakeOAuthSession:
    """Implements the three OAuth2Session calls OAuthClient makes."""

    def __init__(self, factory: FakeOAuthSessionFactory, **kwargs) -> None:
        self.factory = factory
        self.kwargs = kwargs

    def create_authorization_url(self, url: str, state: str | None = None, **params):
        query = {
            "response_type": "code",
            "client_id": self.kwargs["client_id"],
            "redirect_uri": self.kwargs["redirect_uri"],
            "state": state,
            **params,
        }
        return f"{url}?{urlencode(query)}", state

    def fetch_token(self, url: str, code: str | None = None, body: str = "", timeout=None):
        self.factory.exchanges.append({"url": url, "code": code, "body": body, "timeout": timeout})
        if self.factory.token_error is not None:
            raise self.factory.token_error
        return dict(self.factory.token)

    def get(self, url: str, timeout=None):
        self.factory.profile_requests.append(url)
        if self.factory.profile_error is not None:
            raise self.factory.profile_error
        return FakeResponse(self.factory.profiles.get(url, {}), self.factory.profile_status)


class FakeOAuthSessionFactory:
    """Callable with OAuth2Session's constructor signature.

    Tests set profiles[<profile_url>] to the provider payload they want the
    exchange to return, or token_error/profile_error to simulate failures.
    """

    def __init__(self) -> None:
        self.sessions: list[FakeOAuthSession] = []
        self.exchanges: list[dict] = []
        self.profile_requests: list[str] = []
        self.token: dict = {"access_token": "fake-access-token", "token_type": "Bearer"}
        self.token_error: Exception | None = None
        self.profile_error: Exception | None = None
        self.profile_status = 200
        self.profiles: dict[str, dict] = {}

    def __call__(self, **kwargs) -> FakeOAuthSession:
        session = FakeOAuthSession(self, **kwargs)
        self.sessions.append(session)
        return session


def make_oauth_client(factory: FakeOAuthSessionFactory) -> OAuthClient:
    providers = {
        "google": GoogleProvider("google-id", "google-secret"),
        "kakao": KakaoProvider("kakao-id", "kakao-secret"),
        "naver": NaverProvider("naver-id", "naver-secret"),
    }
    return OAuthClient(providers, timeout=5.0, session_factory=factory)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_engine():
    """Fresh named shared-memory SQLite engine, visible to every thread."""
    return create_store_engine(f"sqlite:///file:doorman_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(engine, oauth: OAuthClient):
    """Return an async context manager that replaces the real lifespan.

    Builds the same object graph as api.main.lifespan, but over the test
    engine and the fake-backed OAuthClient.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.user_store = UserStore(engine)
        app.state.session_store = SessionStore(engine)
        app.state.oauth = oauth
        app.state.auth_service = AuthService(
            app.state.user_store,
            app.state.session_store,
            IdentityReconciler(app.state.user_store),
            get_settings(),
        )
        yield

    return test_lifespan


def create_local_user(store: UserStore, email: str = "ann@example.com", password: str = "correct-horse") -> int:
    return store.create_local("Ann Lee", email, hash_password(password))


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    eng = create_store_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def session_store(engine) -> SessionStore:
    return SessionStore(engine)


@pytest.fixture
def fake_oauth() -> FakeOAuthSessionFactory:
    return FakeOAuthSessionFactory()


# ---------------------------------------------------------------------------
# Integration fixtures -- one fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def api_client(fake_oauth) -> Generator[TestClient, None, None]:
    """TestClient over the full app with an isolated store.

    Stores are reachable as client.app.state.user_store / session_store.
    """
    test_engine = _make_test_engine()
    app.router.lifespan_context = _patch_lifespan(test_engine, make_oauth_client(fake_oauth))
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
    test_engine.dispose()


@pytest.fixture
def web_client(fake_oauth) -> Generator[TestClient, None, None]:
    """Like api_client but with follow_redirects=False.

    Browser OAuth tests assert on Location headers and Set-Cookie values,
    which are invisible once the client follows the redirect.
    """
    test_engine = _make_test_engine()
    app.router.lifespan_context = _patch_lifespan(test_engine, make_oauth_client(fake_oauth))
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client
    test_engine.dispose()
