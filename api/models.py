"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models accept both snake_case and the camelCase keys sent by the
original browser client (phoneNumber, newPassword, ...).

Emails are stripped and lower-cased here so the store only ever sees the
canonical form. One-time codes are passed through untouched: whitespace is
not trimmed, so " 123456" is simply a wrong code.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.models import Account

PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 128


class _EmailNormalized(BaseModel):
    email: EmailStr

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_EmailNormalized):
    """Request body for POST /api/v1/auth/register."""

    name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    phone_country_code: Optional[str] = Field(
        default=None,
        max_length=8,
        pattern=r"^\+?\d{1,4}$",
        validation_alias=AliasChoices("phone_country_code", "phoneCountryCode"),
    )
    phone_number: Optional[str] = Field(
        default=None,
        max_length=20,
        pattern=r"^\d*$",
        validation_alias=AliasChoices("phone_number", "phoneNumber"),
    )

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


class LoginRequest(_EmailNormalized):
    """Request body for POST /api/v1/auth/login."""

    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class EmailRequest(_EmailNormalized):
    """Request body for resend-verification and forgot-password."""


class CodeSubmission(_EmailNormalized):
    """Request body for verify-email and verify-reset-code."""

    code: str = Field(min_length=1, max_length=16)


class ResetPasswordRequest(CodeSubmission):
    """Request body for POST /api/v1/auth/reset-password."""

    new_password: str = Field(
        min_length=PASSWORD_MIN_LENGTH,
        max_length=PASSWORD_MAX_LENGTH,
        validation_alias=AliasChoices("new_password", "newPassword"),
    )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. Never includes the password hash or any code."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    phone_country_code: Optional[str]
    phone_number: Optional[str]
    is_verified: bool
    created_at: str

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            name=account.name,
            email=account.email,
            phone_country_code=account.phone_country_code,
            phone_number=account.phone_number,
            is_verified=account.is_verified,
            created_at=account.created_at.isoformat() if account.created_at else "",
        )


class MessageResponse(BaseModel):
    """Plain acknowledgment.

    expires_in_seconds is set only where revealing it leaks nothing (a code
    reissue for an address the caller already proved exists).
    """

    model_config = ConfigDict(frozen=True)

    message: str
    expires_in_seconds: Optional[int] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
