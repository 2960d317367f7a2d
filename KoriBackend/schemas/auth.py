from datetime import datetime
from typing import List, Optional

from pydantic import EmailStr, Field, field_validator

from KoriBackend.schemas.common import CamelModel


def _strip(value: Optional[str]) -> Optional[str]:
    return value.strip() if isinstance(value, str) else value


# Request bodies
class RegisterRequest(CamelModel):
    full_name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("full_name", mode="before")
    @classmethod
    def strip_full_name(cls, value):
        return _strip(value)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshTokenRequest(CamelModel):
    refresh_token: Optional[str] = None


class UpdateProfileRequest(CamelModel):
    full_name: Optional[str] = Field(None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None

    @field_validator("full_name", mode="before")
    @classmethod
    def strip_full_name(cls, value):
        return _strip(value)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=128)


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6, max_length=128)


class GoogleTokenRequest(CamelModel):
    token: str = Field(..., min_length=1)


# Responses
class GeneratedImageOut(CamelModel):
    id: int
    image_url: str
    s3_key: Optional[str] = None
    prompt: str
    created_at: Optional[datetime] = None


# Sanitized user: never carries password hash, tokens, lockout or reset state
class UserOut(CamelModel):
    id: str
    full_name: str
    email: str
    role: str
    is_verified: bool
    auth_provider: str
    avatar: Optional[str] = None
    generated_images: List[GeneratedImageOut] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
