"""
Authentication Router
Login, token refresh and session management endpoints
"""
from typing import List
from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from config import AuthConfig
from app.core.cookies import set_refresh_cookie, clear_refresh_cookie, current_refresh_token
from app.dependencies.auth import get_db, get_auth_service, get_auth_config, get_current_user_id
from app.dependencies.rate_limit import check_auth_rate_limit
from app.schemas.auth import (
    UserRegister,
    UserLogin,
    PasswordChange,
    EmailVerification,
    ResendVerification,
    UserResponse,
    UserDetailResponse,
    LoginResponse,
    TokenResponse,
    SessionResponse,
    LogoutAllResponse,
    MessageResponse
)
from app.services.auth_service import AuthService
from app.services.device_info import DeviceInfo
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

# Endpoint names reachable without an access token
PUBLIC_ENDPOINTS = ("register", "login", "refresh_token", "logout", "verify_email", "resend_verification")


# ============================================================================
# REGISTRATION & EMAIL VERIFICATION
# ============================================================================

@router.post(
    "/register",
    response_model=LoginResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_auth_rate_limit)]
)
async def register(
    user_data: UserRegister,
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
    config: AuthConfig = Depends(get_auth_config)
):
    """
    Register a new user and sign them in

    - Password strength validation
    - Email uniqueness check
    - Verification email sent in the background
    - Refresh token in httpOnly cookie
    """
    user, access_token, refresh_token = await auth_service.register_user(
        user_data,
        DeviceInfo.from_request(request),
        db,
        background_tasks
    )
    set_refresh_cookie(response, refresh_token, config)

    return LoginResponse(
        user=UserResponse.model_validate(user),
        access_token=access_token,
        expires_in=auth_service.access_expires_in
    )


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(
    verification_data: EmailVerification,
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service)
):
    await auth_service.verify_email(verification_data.token, db)

    return MessageResponse(message="Email verified successfully")


@router.post(
    "/resend-verification",
    response_model=MessageResponse,
    dependencies=[Depends(check_auth_rate_limit)]
)
async def resend_verification(
    data: ResendVerification,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service)
):
    """
    Resend email verification link

    Answers the same for unknown addresses to prevent user enumeration.
    """
    await auth_service.resend_verification(data.email, db, background_tasks)

    return MessageResponse(
        message="If the email exists and is not verified, a verification link has been sent."
    )


# ============================================================================
# LOGIN & TOKEN MANAGEMENT
# ============================================================================

@router.post("/login", response_model=LoginResponse, dependencies=[Depends(check_auth_rate_limit)])
async def login(
    login_data: UserLogin,
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
    config: AuthConfig = Depends(get_auth_config)
):
    """
    Login with email and password

    - Account lockout after repeated failures
    - Refresh token in httpOnly cookie, one session per device
    """
    user, access_token, refresh_token = await auth_service.login(
        login_data,
        DeviceInfo.from_request(request),
        db,
        background_tasks
    )
    set_refresh_cookie(response, refresh_token, config)

    return LoginResponse(
        user=UserResponse.model_validate(user),
        access_token=access_token,
        expires_in=auth_service.access_expires_in
    )


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
    config: AuthConfig = Depends(get_auth_config)
):
    """
    Exchange the refresh cookie for a new access token

    The refresh session is rotated (new cookie, old one revoked) once it is
    inside the rotation window; otherwise the cookie is left unchanged.
    """
    access_token, new_refresh_token = await auth_service.refresh_tokens(
        request.cookies.get(config.refresh_cookie_name),
        DeviceInfo.from_request(request),
        db
    )
    if new_refresh_token:
        set_refresh_cookie(response, new_refresh_token, config)

    return TokenResponse(
        access_token=access_token,
        expires_in=auth_service.access_expires_in,
        rotated=new_refresh_token is not None
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
    config: AuthConfig = Depends(get_auth_config)
):
    """Revoke the current refresh session; safe to call without one"""
    await auth_service.logout(request.cookies.get(config.refresh_cookie_name))
    clear_refresh_cookie(response, config)

    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=LogoutAllResponse)
async def logout_all(
    response: Response,
    user_id: str = Depends(get_current_user_id),
    auth_service: AuthService = Depends(get_auth_service),
    config: AuthConfig = Depends(get_auth_config)
):
    """Revoke every session of the caller, including the current one"""
    count = await auth_service.logout_all(user_id)
    clear_refresh_cookie(response, config)

    return LogoutAllResponse(
        message=f"Logged out from {count} session(s)",
        revoked_sessions=count
    )


# ============================================================================
# SESSION MANAGEMENT
# ============================================================================

@router.get("/sessions", response_model=List[SessionResponse])
async def list_sessions(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    auth_service: AuthService = Depends(get_auth_service),
    config: AuthConfig = Depends(get_auth_config)
):
    """Active sessions of the caller, most recently used first"""
    sessions = await auth_service.list_sessions(
        user_id,
        current_refresh_token(request, config)
    )

    return [
        SessionResponse(
            session_id=session.session_id,
            device_type=session.device_type,
            device_name=session.device_name,
            created_at=session.created_at,
            last_used_at=session.last_used_at,
            expires_at=session.expires_at,
            is_current=is_current
        )
        for session, is_current in sessions
    ]


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
async def revoke_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    auth_service: AuthService = Depends(get_auth_service)
):
    """Revoke one of the caller's sessions; unknown or foreign ids are a no-op"""
    revoked = await auth_service.revoke_session(user_id, session_id)

    return MessageResponse(
        message="Session revoked" if revoked else "Session not found or already revoked",
        success=revoked
    )


# ============================================================================
# PASSWORD MANAGEMENT & PROFILE
# ============================================================================

@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    data: PasswordChange,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
    config: AuthConfig = Depends(get_auth_config)
):
    """Change password; every other session of the caller is signed out"""
    revoked = await auth_service.change_password(
        user_id,
        data.current_password,
        data.new_password,
        current_refresh_token(request, config),
        db
    )

    return MessageResponse(
        message=f"Password changed successfully. {revoked} other session(s) signed out."
    )


@router.get("/me", response_model=UserDetailResponse)
async def get_current_user_info(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service)
):
    user, active_sessions = await auth_service.get_profile(user_id, db)

    return UserDetailResponse(
        **UserResponse.model_validate(user).model_dump(),
        active_sessions=active_sessions
    )
