"""
auth/errors.py -- Error taxonomy for the session and identity layer.

Every public operation in auth/ raises one of these (or returns normally).
Raw SQLAlchemy, requests and Authlib exceptions are translated at the
boundary of the operation that saw them and never reach route handlers.

JSON errors (AuthError subclasses) carry an HTTP status, a short machine code,
a user-facing message, and optional extra response fields such as
isSocialLogin. The FastAPI exception handler in api/main.py renders them as
{"success": false, "error": message, **extra}.

OAuth flow errors (OAuthFlowError subclasses) are never rendered as JSON. The
browser callback in web/routes.py turns them into a redirect to the login page
with a human-readable ?error= message and logs the detail server-side.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations


class AuthError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, **extra) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra


class ValidationError(AuthError):
    """Malformed or missing input. The message names what to fix."""

    status_code = 400
    code = "validation_error"


class AuthenticationError(AuthError):
    """Wrong credentials, unknown account, or missing/invalid session."""

    status_code = 401
    code = "unauthenticated"


class ForbiddenError(AuthError):
    """Right identity, wrong account state or wrong login method."""

    status_code = 403
    code = "forbidden"


class DuplicateEmailError(AuthError):
    status_code = 409
    code = "duplicate_email"

    def __init__(self, message: str = "This email is already registered.", **extra) -> None:
        super().__init__(message, **extra)


class InternalError(AuthError):
    """Anything unexpected. The message is generic; details go to the log."""

    status_code = 500
    code = "internal_error"


# ---------------------------------------------------------------------------
# OAuth flow errors -- surfaced only as login-page redirects
# ---------------------------------------------------------------------------


class OAuthFlowError(Exception):
    """Base for failures of the browser OAuth flow.

    user_message is what the login page shows. The exception's own str() may
    contain provider detail and is only ever logged.
    """

    user_message: str = "Social login failed. Please try again."


class StateMismatchError(OAuthFlowError):
    user_message = "Security verification failed. Please try again."


class ProviderError(OAuthFlowError):
    user_message = "The login provider could not verify your account. Please try again."


class IdentityConflictError(OAuthFlowError):
    user_message = (
        "This email is already registered with another login method. "
        "Please sign in the way you originally signed up."
    )
