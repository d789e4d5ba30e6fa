from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field, field_validator
from uuid import UUID


class UserRegister(BaseModel):
    """User registration request"""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    full_name: Optional[str] = Field(None, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class UserLogin(BaseModel):
    """User login request"""
    email: EmailStr
    password: str = Field(..., max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class PasswordChange(BaseModel):
    """Password change for authenticated users"""
    current_password: str = Field(..., max_length=128)
    new_password: str = Field(..., min_length=8, max_length=128)


class EmailVerification(BaseModel):
    """Email verification request"""
    token: str = Field(..., min_length=1, max_length=255)


class ResendVerification(BaseModel):
    """Resend verification email"""
    email: EmailStr

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class UserResponse(BaseModel):
    """User response"""
    user_id: UUID
    email: EmailStr
    full_name: Optional[str] = None
    role: str
    email_verified: bool
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class UserDetailResponse(UserResponse):
    """Profile of the authenticated caller"""
    active_sessions: int = 0


class TokenResponse(BaseModel):
    """Access token issued by /auth/refresh; the refresh token travels in a cookie"""
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    rotated: bool = False


class LoginResponse(BaseModel):
    """Login/registration response with user info and access token"""
    user: UserResponse
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class SessionResponse(BaseModel):
    """An active refresh session, as shown to its owner"""
    session_id: UUID
    device_type: Optional[str] = None
    device_name: Optional[str] = None
    created_at: datetime
    last_used_at: Optional[datetime] = None
    expires_at: datetime
    is_current: bool = False

    model_config = {"from_attributes": True}


class LogoutAllResponse(BaseModel):
    message: str
    revoked_sessions: int


class MessageResponse(BaseModel):
    """Generic message response"""
    message: str
    success: bool = True
