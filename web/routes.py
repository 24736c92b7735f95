"""
web/routes.py -- Browser redirect routes for social login.

These routes never render JSON. Every outcome is a 302: to the provider, to
the post-login page, or back to the login page with a human-readable
?error= message the page displays. They share app.state with the API routes
(same OAuthClient, same AuthService).

Routes:
  GET /auth/{provider}           -- set the state cookie, redirect to the provider
  GET /auth/{provider}/callback  -- validate state, exchange code, sign in

Security notes:
  [H1] The state nonce lives in an httpOnly, SameSite=lax cookie with a
       short Max-Age. The callback compares it with the echoed ?state= before
       the code is exchanged (see OAuthClient.complete_auth). The cookie is
       cleared on every callback outcome so a nonce is single-use.
  [C2] Redirect targets come from settings only (LOGIN_PAGE_URL,
       POST_LOGIN_URL); nothing from the query string is used as a target.
  [M3] Provider error text is logged, not shown. The login page only ever
       receives messages chosen here.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse

from auth.errors import AuthError, OAuthFlowError, ProviderError
from auth.oauth import OAuthClient
from auth.service import AuthService
from auth.tokens import clear_state_cookie, set_session_cookie, set_state_cookie
from core.config import get_settings

logger = logging.getLogger("doorman.web")

router = APIRouter()

_NOT_CONFIGURED = "This login method is not available."


def _login_redirect(message: str) -> RedirectResponse:
    """302 back to the login page with ?error=, consuming any state cookie."""
    target = f"{get_settings().login_page_url}?{urlencode({'error': message})}"
    resp = RedirectResponse(target, status_code=302)
    clear_state_cookie(resp)
    return resp


def _label(oauth: OAuthClient, provider: str) -> str:
    registered = oauth.providers.get(provider)
    return registered.label if registered is not None else "Social"


# ---------------------------------------------------------------------------
# GET /auth/{provider} -- start the authorization-code flow
# ---------------------------------------------------------------------------


@router.get("/auth/{provider}")
def oauth_redirect(request: Request, provider: str) -> RedirectResponse:
    """Redirect the browser to the provider's authorization page."""
    oauth: OAuthClient = request.app.state.oauth
    if provider not in oauth.providers:
        logger.warning("OAuth start for unavailable provider %r", provider)
        return _login_redirect(_NOT_CONFIGURED)

    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    try:
        auth_request = oauth.begin_auth(provider, redirect_uri)
    except ProviderError:
        logger.exception("Could not build %s authorization URL", provider)
        return _login_redirect(f"{_label(oauth, provider)} login failed. Please try again.")

    resp = RedirectResponse(auth_request.redirect_url, status_code=302)
    set_state_cookie(resp, auth_request.state)
    return resp


# ---------------------------------------------------------------------------
# GET /auth/{provider}/callback -- finish the flow and open a session
# ---------------------------------------------------------------------------


@router.get("/auth/{provider}/callback", name="oauth_callback")
def oauth_callback(
    request: Request,
    provider: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
) -> RedirectResponse:
    """Handle the provider callback.

    Flow:
      1. Provider reported an error (user cancelled, consent refused) -> login page.
      2. Compare ?state= with the state cookie; exchange the code; fetch the
         profile (OAuthClient.complete_auth). Any failure -> login page.
      3. Reconcile the profile with local users and open a session
         (AuthService.social_login).
      4. Set the session cookie, clear the state cookie, go to POST_LOGIN_URL.
    """
    cfg = get_settings()
    oauth: OAuthClient = request.app.state.oauth
    service: AuthService = request.app.state.auth_service
    label = _label(oauth, provider)

    # Step 1
    if error:
        logger.info("%s authorization ended with %r: %s", provider, error, error_description or "-")
        return _login_redirect(f"{label} login was cancelled.")

    if provider not in oauth.providers:
        return _login_redirect(_NOT_CONFIGURED)

    # Steps 2 and 3
    ip_address = request.client.host if request.client else None
    try:
        profile = oauth.complete_auth(
            provider,
            code=code,
            state=state,
            cookie_state=request.cookies.get(cfg.state_cookie_name),
            redirect_uri=str(request.url_for("oauth_callback", provider=provider)),
        )
        result = service.social_login(
            provider,
            profile,
            ip_address=ip_address,
            user_agent=request.headers.get("user-agent"),
        )
    except OAuthFlowError as exc:
        logger.warning("%s login rejected (%s): %s", provider, type(exc).__name__, exc)
        return _login_redirect(exc.user_message)
    except AuthError as exc:
        logger.warning("%s login refused for a matched account: %s", provider, exc.message)
        return _login_redirect(exc.message)
    except Exception:
        # This route only ever answers with a redirect, never the JSON 500 envelope.
        logger.exception("Unexpected failure in %s callback", provider)
        return _login_redirect(OAuthFlowError.user_message)

    # Step 4
    resp = RedirectResponse(cfg.post_login_url, status_code=302)
    set_session_cookie(resp, result.session_id, result.ttl_days)
    clear_state_cookie(resp)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
