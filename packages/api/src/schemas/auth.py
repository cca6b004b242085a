# This project was developed with assistance from AI tools.
"""Authentication and authorization schemas."""

from datetime import datetime

from db.enums import UserRole
from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserContext(BaseModel):
    """Injected by auth middleware into every authenticated request."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    role: UserRole
    email: str
    name: str
    is_admin_portal: bool = False
    session_id: str | None = None


class TokenPayload(BaseModel):
    """Decoded session cookie claims."""

    sid: str
    sub: str
    exp: int | None = None


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    admin_portal: bool = False


class UserResponse(BaseModel):
    """Public view of a user account. Never includes the password hash."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    first_name: str | None = None
    last_name: str | None = None
    role: UserRole
    account_type: str
    is_admin_portal: bool = False
    is_active: bool = True
    created_at: datetime | None = None


class AuthStatusResponse(BaseModel):
    """Response for GET /api/auth/status."""

    is_logged_in: bool
    user: UserResponse | None = None


class LoginResponse(BaseModel):
    user: UserResponse
    expires_at: datetime


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=16, max_length=255)
    new_password: str = Field(min_length=8, max_length=128)
