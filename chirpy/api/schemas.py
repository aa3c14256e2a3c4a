from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

_VALID_ERROR_CODES = frozenset(
    {
        "validation_error",
        "unauthorized",
        "not_found",
        "conflict",
        "server_error",
    }
)


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    normalized = unicodedata.normalize("NFKC", value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_password_strength(value: str) -> str:
    if len(value) < 8:
        raise ValueError("password must be at least 8 characters")
    if len(value) > 128:
        raise ValueError("password must be at most 128 characters")
    return value


class UserCredentialsRequest(BaseModel):
    """Body of ``POST /api/users`` and ``PUT /api/users``."""

    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _validate_user_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return _validate_password_strength(value)


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., max_length=128)
    expires_in_seconds: Optional[int] = Field(
        default=None,
        ge=0,
        description="Requested access token lifetime; 0 or omitted means the maximum",
    )

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)


class UserResponse(BaseModel):
    id: UUID
    email: str
    created_at: datetime
    updated_at: datetime
    is_chirpy_red: bool = False


class LoginResponse(UserResponse):
    token: str
    refresh_token: str


class RefreshResponse(BaseModel):
    token: str


class PolkaWebhookData(BaseModel):
    user_id: UUID


class PolkaWebhookRequest(BaseModel):
    event: str
    data: PolkaWebhookData
