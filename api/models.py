"""
API request and response models for Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User

# Deliberately loose: the store matches emails exactly as given, so the only
# job here is to reject obvious garbage with a 422.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)


class VerifyOTPRequest(BaseModel):
    """The code is not pattern-checked: a malformed code must fail exactly like
    a wrong one (400 invalid_or_expired_otp), not with a 422. It is not stripped
    either: the match is exact."""

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    code: str = Field(min_length=1, max_length=16)


class ResetPasswordRequest(BaseModel):
    reset_token: str = Field(min_length=1, max_length=4096)
    # Characters, not bytes: auth/passwords.py hashes the first 72 UTF-8 bytes.
    new_password: str = Field(min_length=6, max_length=72)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenPairResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class VerifyOTPResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    reset_token: str


class UserInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    role: str
    provider: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserInfo":
        return cls(id=user.id, email=user.email, role=user.role, provider=user.provider or None)


class OAuthLoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    user: UserInfo
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
