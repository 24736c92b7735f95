"""
auth/dependencies.py -- FastAPI Depends() helpers for the session-backed auth gate.

The opaque session id is read from, in priority order:
  1. The session cookie -- set by password login and the OAuth callback.
  2. Authorization: Bearer <session id> header -- non-browser clients.

Cookies come from Starlette's request.cookies, which parses the Cookie header
once per request into a mapping.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises AuthenticationError (401) if
unauthenticated; the handler in api/main.py renders that as JSON.

Layer rule: no imports from api/ or web/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import AuthenticationError, InternalError
from auth.models import User
from auth.service import AuthService
from auth.sessions import SessionStore
from core.config import get_settings

logger = logging.getLogger("doorman.auth")


def get_session_id(request: Request) -> str | None:
    """Return the raw session id presented by the request, if any."""
    session_id = request.cookies.get(get_settings().session_cookie_name)
    if not session_id:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            session_id = auth_header[7:].strip()
    return session_id or None


def try_get_current_user(request: Request) -> User | None:
    """Resolve the request's session to an active user, or None. Never raises
    for an invalid session; store failures surface as InternalError."""
    session_id = get_session_id(request)
    if not session_id:
        return None
    session_store: SessionStore = request.app.state.session_store
    try:
        return session_store.verify(session_id)
    except SQLAlchemyError as exc:
        logger.exception("Session lookup failed")
        raise InternalError("An error occurred while checking your session.") from exc


def get_current_user(request: Request) -> User:
    """Require a valid session. Raises AuthenticationError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    if get_session_id(request) is None:
        raise AuthenticationError("Login required.")
    user = try_get_current_user(request)
    if user is None:
        raise AuthenticationError("Your session has expired or is invalid.")
    return user


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service
