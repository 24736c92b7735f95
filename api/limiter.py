"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance keeps one in-memory counter store for every
route. A limiter created per module would count in isolation and the
credential endpoints would never be throttled.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def credential_rate_limit() -> str:
    """Limit string for signup and login, read at request time (LOGIN_RATE_LIMIT)."""
    return get_settings().login_rate_limit
