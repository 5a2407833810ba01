"""
API request and response models for the identity service REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models check shape and length only. Business rules (password
strength, email format, phone and country formats) live in the engine so the
CLI and the HTTP layer enforce exactly the same policy, and violations come
back as a 400 validation_error listing every broken rule.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Account, AccountStatistics

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    User = "User"
    Admin = "Admin"


class StatusEnum(str, Enum):
    """Statuses an administrator may set directly. Deactivation is DELETE."""

    Active = "Active"
    Suspended = "Suspended"


# ---------------------------------------------------------------------------
# Request models -- public auth flows
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Identity and profile fields are trimmed before the length checks run.
    The password is taken exactly as sent: surrounding spaces are part of
    the secret, and login compares it untrimmed.
    """

    email: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=128)
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=20)
    country: Optional[str] = Field(default=None, max_length=2)
    locale: Optional[str] = Field(default=None, max_length=10)

    @field_validator("email", "first_name", "last_name", "phone", "country", "locale", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value


class VerifyEmailRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=100)
    otp: str = Field(min_length=1, max_length=10)


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    """Body for POST /auth/refresh-token. The refreshToken cookie is used when omitted."""

    refresh_token: Optional[str] = Field(default=None, max_length=200)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=100)


class ResetPasswordRequest(BaseModel):
    email: str = Field(min_length=1, max_length=100)
    otp: str = Field(min_length=1, max_length=10)
    new_password: str = Field(min_length=1, max_length=128)

    @field_validator("email", "otp", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value


class LogoutRequest(BaseModel):
    """Body for POST /auth/logout. The refreshToken cookie is used when omitted."""

    refresh_token: Optional[str] = Field(default=None, max_length=200)


# ---------------------------------------------------------------------------
# Request models -- authenticated account endpoints
# ---------------------------------------------------------------------------


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


class ProfileUpdate(BaseModel):
    """Request body for PATCH /api/v1/accounts/me. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=20)
    country: Optional[str] = Field(default=None, max_length=2)
    locale: Optional[str] = Field(default=None, max_length=10)
    avatar_url: Optional[str] = Field(default=None, max_length=500)


class FcmTokenUpdate(BaseModel):
    """Request body for POST /api/v1/accounts/me/fcm-token."""

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1, max_length=512)


class RoleUpdate(BaseModel):
    role: RoleEnum


class StatusUpdate(BaseModel):
    status: StatusEnum


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public profile of an account. Never carries the password hash or OTPs."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    locale: str = "en"
    avatar_url: Optional[str] = None
    role: str
    status: str
    email_verified: bool
    created_at: Optional[str] = None
    last_login_at: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(**account.public_profile())


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: int
    email: str
    otp_sent: bool
    message: str


class SessionResponse(BaseModel):
    """Returned by login and verify-email. The refresh token is also set as a cookie."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    account: AccountResponse


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class StatisticsResponse(BaseModel):
    """Response for GET /api/v1/accounts/statistics."""

    model_config = ConfigDict(frozen=True)

    total: int
    pending: int
    active: int
    suspended: int
    deactivated: int
    email_verified: int
    administrators: int
    locked: int
    created_last_7_days: int

    @classmethod
    def from_statistics(cls, stats: AccountStatistics) -> "StatisticsResponse":
        return cls(**vars(stats))


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
