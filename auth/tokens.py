"""
auth/tokens.py -- Password hashing, opaque token generation, and cookie helpers.

Security design decisions:
  Passwords: bcrypt-pbkdf via bcrypt.kdf(). A fresh 16-byte salt per call and
       a configurable round count (Settings.password_kdf_rounds) make each
       guess deliberately expensive. The encoded form carries everything
       verify needs:  bcrypt-pbkdf:<rounds>:<salt_hex>:<key_hex>.
       Digests are compared with hmac.compare_digest so a mismatching prefix
       does not show up in response time.

  Legacy hashes: accounts imported from the previous deployment store
       <salt_hex>:<hash_hex> produced by PBKDF2-HMAC-SHA256 with 100,000
       iterations over (salt || password). verify_password() still accepts
       them so those users can log in.

  Opaque tokens: secrets.token_urlsafe(32) gives 256 bits of entropy for
       session ids, the sessions.token column, and OAuth state nonces. They
       carry no structure; validity always requires a store lookup.

  Cookies: httpOnly, Secure (unless SECURE_COOKIES=false), SameSite=lax,
       Path=/, Max-Age matching the session lifetime.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets

import bcrypt

from core.config import get_settings

logger = logging.getLogger("doorman.auth")

_SCHEME = "bcrypt-pbkdf"
_SALT_BYTES = 16
_KEY_BYTES = 32

_LEGACY_ITERATIONS = 100_000

_SECONDS_PER_DAY = 24 * 60 * 60

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def _derive(plain: str, salt: bytes, rounds: int) -> bytes:
    # Round count is validated by Settings at startup [M6]; the few-rounds
    # warning would only fire for DEBUG configurations.
    return bcrypt.kdf(
        password=plain.encode("utf-8"),
        salt=salt,
        desired_key_bytes=_KEY_BYTES,
        rounds=rounds,
        ignore_few_rounds=True,
    )


def hash_password(plain: str) -> str:
    """Return the encoded bcrypt-pbkdf hash of a plaintext password.

    Two calls with the same input produce different strings because the salt
    is random. Raises ValueError for an empty password; callers validate
    length before hashing.
    """
    if not plain:
        raise ValueError("Cannot hash an empty password")
    rounds = get_settings().password_kdf_rounds
    salt = secrets.token_bytes(_SALT_BYTES)
    key = _derive(plain, salt, rounds)
    return f"{_SCHEME}:{rounds}:{salt.hex()}:{key.hex()}"


def verify_password(plain: str, encoded: str | None) -> bool:
    """Return True if plain matches the encoded hash.

    Never raises. A malformed encoding (wrong field count, bad hex, bad round
    count, unknown scheme) or an empty candidate is simply "not verified".
    """
    if not plain or not encoded:
        return False
    parts = encoded.split(":")
    try:
        if len(parts) == 4 and parts[0] == _SCHEME:
            rounds = int(parts[1])
            salt = bytes.fromhex(parts[2])
            expected = bytes.fromhex(parts[3])
            if rounds < 1 or not salt or not expected:
                return False
            actual = _derive(plain, salt, rounds)
        elif len(parts) == 2:
            salt = bytes.fromhex(parts[0])
            expected = bytes.fromhex(parts[1])
            if not salt or not expected:
                return False
            actual = _derive_legacy(plain, salt)
        else:
            return False
    except (ValueError, TypeError):
        return False
    return hmac.compare_digest(actual, expected)


def _derive_legacy(plain: str, salt: bytes) -> bytes:
    """PBKDF2-HMAC-SHA256 exactly as the previous deployment computed it.

    The key material was the salt concatenated with the password bytes, and
    the same salt was then passed as the PBKDF2 salt.
    """
    return hashlib.pbkdf2_hmac("sha256", salt + plain.encode("utf-8"), salt, _LEGACY_ITERATIONS, _KEY_BYTES)


# ---------------------------------------------------------------------------
# Opaque tokens
# ---------------------------------------------------------------------------


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


def new_state_token() -> str:
    """Random CSRF nonce for one OAuth login attempt."""
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def _set_cookie(response, name: str, value: str, max_age: int) -> None:
    response.set_cookie(
        name,
        value=value,
        max_age=max_age,
        path="/",
        httponly=True,
        samesite="lax",
        secure=get_settings().secure_cookies,
    )


def set_session_cookie(response, session_id: str, ttl_days: int) -> None:
    """Write the opaque session id as an httpOnly cookie on the response.

    max_age matches the session row's expiry so both end together
    (7 days -> 604800 s, 30 days -> 2592000 s).
    """
    _set_cookie(response, get_settings().session_cookie_name, session_id, ttl_days * _SECONDS_PER_DAY)


def clear_session_cookie(response) -> None:
    """Overwrite the session cookie with an empty, zero-lifetime value."""
    _set_cookie(response, get_settings().session_cookie_name, "", 0)


def set_state_cookie(response, state: str) -> None:
    cfg = get_settings()
    _set_cookie(response, cfg.state_cookie_name, state, cfg.oauth_state_ttl_seconds)


def clear_state_cookie(response) -> None:
    _set_cookie(response, get_settings().state_cookie_name, "", 0)
