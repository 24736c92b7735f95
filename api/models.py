"""
API request and response models for the Doorman REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request bodies use the camelCase keys the browser pages send (passwordConfirm,
agreeTerms, keepLogin...) through field aliases. Every field is optional at
this layer: a missing field is a business-rule failure with a specific message
from AuthService, not a generic schema error.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    password_confirm: Optional[str] = Field(default=None, alias="passwordConfirm")
    agree_terms: bool = Field(default=False, alias="agreeTerms")
    agree_marketing: bool = Field(default=False, alias="agreeMarketing")


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    password: Optional[str] = None
    keep_login: bool = Field(default=False, alias="keepLogin")


class ProfileUpdateRequest(BaseModel):
    """Request body for PUT /api/v1/auth/profile.

    name is tri-state: absent from the body means "leave unchanged". The
    route checks model_fields_set to tell absence from an explicit value.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    current_password: Optional[str] = Field(default=None, alias="currentPassword")
    new_password: Optional[str] = Field(default=None, alias="newPassword")
    new_password_confirm: Optional[str] = Field(default=None, alias="newPasswordConfirm")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """Public projection of a user. Never carries credential material."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: str
    avatar_url: Optional[str] = None
    provider: str
    email_verified: bool


class SignupResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    success: bool = True
    message: str
    user_id: int = Field(alias="userId")


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str
    user: UserOut


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    user: UserOut


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


class OAuthProviderInfo(BaseModel):
    """One enabled provider, for the login page's buttons."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class ErrorResponse(BaseModel):
    """Error envelope returned on 4xx/5xx responses.

    Extra keys (suggestSignup, isSocialLogin, provider) are merged in by the
    AuthError handler when the error carries them.
    """

    model_config = ConfigDict(frozen=True)

    success: bool = False
    error: str


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = {}
