from app.schemas.auth import (
    UserRegister,
    UserLogin,
    PasswordChange,
    EmailVerification,
    ResendVerification,
    UserResponse,
    UserDetailResponse,
    TokenResponse,
    LoginResponse,
    SessionResponse,
    LogoutAllResponse,
    MessageResponse
)

__all__ = [
    "UserRegister",
    "UserLogin",
    "PasswordChange",
    "EmailVerification",
    "ResendVerification",
    "UserResponse",
    "UserDetailResponse",
    "TokenResponse",
    "LoginResponse",
    "SessionResponse",
    "LogoutAllResponse",
    "MessageResponse",
]
