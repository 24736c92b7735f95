"""Unit tests for core/config.py -- Settings validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings


def test_defaults() -> None:
    cfg = Settings(debug=False, password_kdf_rounds=100, secure_cookies=True)
    assert cfg.session_ttl_days == 7
    assert cfg.session_ttl_days_extended == 30
    assert cfg.social_session_ttl_days == 30
    assert cfg.oauth_state_ttl_seconds == 600
    assert cfg.session_cookie_name == "session"
    assert cfg.login_page_url == "/index.html"
    assert cfg.post_login_url == "/main.html"


def test_low_kdf_rounds_rejected_in_production() -> None:
    with pytest.raises(ValidationError, match="PASSWORD_KDF_ROUNDS"):
        Settings(debug=False, password_kdf_rounds=10)


def test_low_kdf_rounds_allowed_in_debug(caplog) -> None:
    cfg = Settings(debug=True, password_kdf_rounds=4)
    assert cfg.password_kdf_rounds == 4
    assert "below the production minimum" in caplog.text


def test_zero_rounds_always_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(debug=True, password_kdf_rounds=0)


@pytest.mark.parametrize(
    "field_name",
    ["session_ttl_days", "session_ttl_days_extended", "social_session_ttl_days", "oauth_state_ttl_seconds"],
)
def test_non_positive_lifetime_rejected(field_name: str) -> None:
    with pytest.raises(ValidationError):
        Settings(debug=True, password_kdf_rounds=4, **{field_name: 0})
