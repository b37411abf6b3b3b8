from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class RegisterRequest(BaseModel):
    """Registration request. Presence and format are checked by the service."""

    email: Optional[str] = Field(default=None, max_length=255)
    username: Optional[str] = Field(default=None, max_length=100)
    password: Optional[str] = Field(default=None, max_length=256)

    @field_validator("email", "username", mode="before")
    @classmethod
    def strip_identity(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value


class LoginRequest(BaseModel):
    """Login request"""

    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=256)

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, max_length=2048)


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, max_length=2048)


class UserResponse(BaseModel):
    """Public user profile"""

    id: int
    email: str
    username: str
    currency_balance: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class LoginUserResponse(BaseModel):
    """Profile returned by login (no creation timestamp)"""

    id: int
    email: str
    username: str
    currency_balance: int


class CurrentUserResponse(UserResponse):
    last_login: Optional[datetime] = None


class TokensResponse(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int


class RegisterResponse(BaseModel):
    user: UserResponse
    tokens: TokensResponse


class LoginResponse(BaseModel):
    user: LoginUserResponse
    tokens: TokensResponse


class RefreshResponse(BaseModel):
    access_token: str
    expires_in: int


class MessageResponse(BaseModel):
    message: str
