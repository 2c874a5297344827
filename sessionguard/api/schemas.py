from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sessionguard.storage.models import UserProfile

MIN_PASSWORD_LENGTH = 6
MIN_USERNAME_LENGTH = 3
PHONE_PATTERN = re.compile(r"^1[3-9]\d{9}$")

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "rate_limited",
    "validation_error",
    "conflict",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None

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
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


def _validate_phone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not PHONE_PATTERN.match(value):
        raise ValueError("phone must be an 11-digit mobile number starting with 1")
    return value


class LoginRequest(BaseModel):
    account: str = Field(..., min_length=1, max_length=50, description="username or phone")
    password: str = Field(..., min_length=1, max_length=256)


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=MIN_USERNAME_LENGTH, max_length=50)
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=256)
    phone: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: Optional[str]) -> Optional[str]:
        return _validate_phone(value)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, max_length=2048)


class UpdateProfileRequest(BaseModel):
    phone: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: Optional[str]) -> Optional[str]:
        return _validate_phone(value)


class TokenPairResponse(BaseModel):
    user_id: str
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    role: str


class UserProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    phone: Optional[str] = None
    role: str
    is_active: bool
    created_at: datetime

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "UserProfileResponse":
        return cls(
            id=profile.id,
            username=profile.username,
            phone=profile.phone,
            role=profile.role.value,
            is_active=profile.is_active,
            created_at=profile.created_at,
        )
