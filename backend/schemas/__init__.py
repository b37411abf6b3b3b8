from .user import (
    CurrentUserResponse,
    LoginRequest,
    LoginResponse,
    LoginUserResponse,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
    TokensResponse,
    UserResponse,
)

__all__ = [
    "CurrentUserResponse",
    "LoginRequest",
    "LoginResponse",
    "LoginUserResponse",
    "LogoutRequest",
    "MessageResponse",
    "RefreshRequest",
    "RefreshResponse",
    "RegisterRequest",
    "RegisterResponse",
    "TokensResponse",
    "UserResponse",
]
