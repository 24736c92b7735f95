"""
api/main.py -- FastAPI application entry point for Doorman.

Exposes account signup, password login, sessions and profile updates over
HTTP. The browser OAuth redirect routes live in web/routes.py and are mounted
by asgi.py.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- CORS headers for the allowed browser origins,
                              credentials allowed so the session cookie flows
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the shared engine and every store/service on startup and
disposes of the engine on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.dependencies import get_current_user
from auth.errors import AuthError
from auth.identity import IdentityReconciler
from auth.models import User
from auth.oauth import OAuthClient
from auth.schema import create_store_engine
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("doorman.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the store engine, stores, OAuth registry and AuthService.

    UserStore and SessionStore share one engine (and so one connection pool).
    Startup order follows the dependencies: engine, stores, reconciler,
    service.
    """
    logger.info("Doorman API starting up")
    cfg = get_settings()
    engine = create_store_engine(cfg.database_url)
    app.state.engine = engine
    app.state.user_store = UserStore(engine)
    app.state.session_store = SessionStore(engine)
    app.state.oauth = OAuthClient.from_settings(cfg)
    app.state.auth_service = AuthService(
        app.state.user_store,
        app.state.session_store,
        IdentityReconciler(app.state.user_store),
        cfg,
    )
    logger.info(
        "Auth initialized (%d OAuth provider(s) enabled)",
        len(app.state.oauth.providers),
    )

    yield

    engine.dispose()
    logger.info("Doorman API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Doorman API",
    description="Email/password and social login with server-side sessions.",
    version=__version__,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by session-protected routes below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Captures wall-clock time around call_next so every response is logged with
# its latency. Cookies and bodies are never logged.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
# Web router (browser OAuth redirects) is mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Session-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires a session."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Doorman API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires a session."""
    return get_redoc_html(openapi_url="/openapi.json", title="Doorman API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the same {"success": false, "error": ...} envelope so
# the browser pages can show error messages without inspecting status codes.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    content = ErrorResponse(error=message).model_dump()
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render AuthService failures with their status and extra flags.

    Extra keys (suggestSignup, isSocialLogin, provider) let the login page
    steer the user to signup or to the right social button.
    """
    return _error(exc.status_code, exc.message, **exc.extra)


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a rate limit is exceeded.

    Plain def: SlowAPIMiddleware calls this handler directly, without awaiting.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "Too many requests. Please try again later.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """A body that is not JSON, or has wrongly typed fields, is a 400 like any other bad input."""
    logger.info("Rejected malformed request on %s: %s", request.url.path, exc.errors())
    return _error(400, "Invalid request body.")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes (404), wrong methods (405) and any other HTTP error, in the same envelope."""
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and store reachability."""
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        logger.warning("Health check could not reach the database", exc_info=True)
        database = "unavailable"
    status = "ok" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=__version__, components={"database": database})
