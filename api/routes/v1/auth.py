"""
api/routes/v1/auth.py -- Account REST endpoints.

Routes:
  POST /api/v1/auth/signup     -- create an email/password account; 201
  POST /api/v1/auth/login      -- password login; sets the session cookie
  POST /api/v1/auth/logout     -- deletes the session row; clears the cookie
  GET  /api/v1/auth/me         -- current user (requires a session)
  PUT  /api/v1/auth/profile    -- change name and/or password (requires a session)
  GET  /api/v1/auth/providers  -- enabled OAuth providers (public)

Handlers are thin: they unpack the body, call AuthService, and map the result
onto the response. AuthError subclasses raised by the service are rendered by
the handler in api/main.py as {"success": false, "error": ...}.

Security:
  [H2] signup and login are rate-limited per IP (LOGIN_RATE_LIMIT).
  [M5] Cache-Control: no-store on responses that set a session cookie.
  A password change revokes every session of the user; the caller gets a
  fresh cookie in the same response so they stay signed in.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import credential_rate_limit, limiter
from api.models import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    OAuthProviderInfo,
    ProfileUpdateRequest,
    SignupRequest,
    SignupResponse,
    UserOut,
)
from auth.dependencies import get_auth_service, get_current_user, get_session_id
from auth.models import UNSET, User
from auth.service import AuthService
from auth.tokens import clear_session_cookie, set_session_cookie

# Auth policy:
# - POST /api/v1/auth/signup:     public
# - POST /api/v1/auth/login:      public
# - POST /api/v1/auth/logout:     public -- ending a session needs no valid session
# - GET  /api/v1/auth/providers:  public -- login page renders buttons from it
# - GET  /api/v1/auth/me:         requires a session (get_current_user)
# - PUT  /api/v1/auth/profile:    requires a session (get_current_user)
router = APIRouter()


def _client_info(request: Request) -> tuple[str | None, str | None]:
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(credential_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/signup", response_model=SignupResponse, status_code=201)
def signup(
    request: Request,
    body: SignupRequest,
    service: AuthService = Depends(get_auth_service),
) -> SignupResponse:
    """Create an email/password account. Does not sign the user in."""
    user_id = service.signup(
        name=body.name,
        email=body.email,
        password=body.password,
        password_confirm=body.password_confirm,
        agree_terms=body.agree_terms,
        agree_marketing=body.agree_marketing,
    )
    return SignupResponse(message="Your account has been created.", user_id=user_id)


@limiter.limit(credential_rate_limit)  # [H2]
@router.post("/auth/login", response_model=LoginResponse)
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Verify email/password and set the session cookie.

    keepLogin selects the extended lifetime (30 days instead of 7); the cookie
    Max-Age always matches the session row's expiry.
    """
    ip_address, user_agent = _client_info(request)
    result = service.login(
        email=body.email,
        password=body.password,
        keep_login=body.keep_login,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            message="You are now logged in.",
            user=UserOut(**result.user.public_dict()),
        ).model_dump(),
    )
    set_session_cookie(resp, result.session_id, result.ttl_days)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Delete the presented session, if any, and clear the cookie."""
    service.logout(get_session_id(request))
    resp = JSONResponse(content=MessageResponse(message="You have been logged out.").model_dump())
    clear_session_cookie(resp)
    return resp


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers(request: Request) -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty when none are set up."""
    return [OAuthProviderInfo(**p) for p in request.app.state.oauth.enabled_providers()]


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return the public profile of the signed-in user."""
    return MeResponse(user=UserOut(**current_user.public_dict()))


@router.put("/auth/profile", response_model=LoginResponse)
def update_profile(
    request: Request,
    body: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Change the display name and/or password.

    A name key absent from the body leaves the name unchanged. After a
    password change every other session is gone and the response carries a
    new session cookie.
    """
    ip_address, user_agent = _client_info(request)
    result = service.update_profile(
        current_user,
        name=body.name if "name" in body.model_fields_set else UNSET,
        current_password=body.current_password,
        new_password=body.new_password,
        new_password_confirm=body.new_password_confirm,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    resp = JSONResponse(
        content=LoginResponse(
            message="Your profile has been updated.",
            user=UserOut(**result.user.public_dict()),
        ).model_dump()
    )
    if result.new_session_id:
        set_session_cookie(resp, result.new_session_id, result.ttl_days)
        resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
