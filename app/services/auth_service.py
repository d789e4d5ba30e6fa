import asyncio
from datetime import timedelta
from typing import List, Optional, Set, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, func, and_
from fastapi import BackgroundTasks
import logging

from config import AuthConfig, settings
from app.core.clock import Clock, system_clock, as_utc
from app.core.exceptions import (
    AccountInactive,
    AccountLocked,
    EmailAlreadyRegistered,
    EmailAlreadyVerified,
    InvalidCredentials,
    RefreshInvalid,
    VerificationTokenInvalid,
    WeakPassword,
)
from app.core.jwt import TokenIssuer
from app.core.password import PasswordHasher, pwd_hasher
from app.core.password_validator import PasswordValidator, password_validator
from app.models.user import User, RefreshSession, LoginAttempt
from app.schemas.auth import UserRegister, UserLogin
from app.services.device_info import DeviceInfo
from app.services.email_service import EmailService, email_service
from app.services.lockout import AccountLockoutPolicy
from app.services.session_manager import SessionManager
from app.services.session_store import to_uuid

logger = logging.getLogger(__name__)


class AuthService:
    """Registration, login and session flows on top of the session manager"""

    def __init__(
        self,
        config: AuthConfig,
        issuer: TokenIssuer,
        sessions: SessionManager,
        lockout: AccountLockoutPolicy,
        hasher: PasswordHasher = pwd_hasher,
        validator: PasswordValidator = password_validator,
        mailer: EmailService = email_service,
        clock: Clock = system_clock,
    ):
        self.config = config
        self.issuer = issuer
        self.sessions = sessions
        self.lockout = lockout
        self.hasher = hasher
        self.validator = validator
        self.mailer = mailer
        self.clock = clock
        self._pending: Set[asyncio.Task] = set()

    @property
    def access_expires_in(self) -> int:
        return int(self.config.access_ttl.total_seconds())

    def mint_access_token(self, user: User, session: Optional[RefreshSession] = None) -> str:
        claims = {"sub": str(user.user_id), "email": user.email, "role": user.role}
        if session is not None:
            claims["sid"] = str(session.session_id)
        return self.issuer.sign_access(claims)

    async def register_user(
        self,
        user_data: UserRegister,
        device_info: DeviceInfo,
        db: AsyncSession,
        background_tasks: Optional[BackgroundTasks] = None
    ) -> Tuple[User, str, str]:
        """Create the account and its first session; returns (user, access token, refresh token)"""
        # Validate password strength
        user_inputs = [user_data.email]
        if user_data.full_name:
            user_inputs.append(user_data.full_name)

        strength = self.validator.validate_password_strength(
            user_data.password,
            user_inputs=user_inputs
        )
        if not strength['valid']:
            raise WeakPassword(
                f"Password too weak: {strength['feedback']}",
                headers={"X-Password-Suggestions": ", ".join(strength['suggestions'])}
            )

        result = await db.execute(select(User.user_id).where(User.email == user_data.email))
        if result.scalar_one_or_none() is not None:
            raise EmailAlreadyRegistered()

        now = self.clock.now()
        verification_token = self.hasher.generate_secure_token(32)

        new_user = User(
            email=user_data.email,
            password_hash=self.hasher.hash_password(user_data.password),
            full_name=user_data.full_name,
            verification_token=verification_token,
            verification_token_expires=now + timedelta(hours=settings.EMAIL_VERIFICATION_TOKEN_EXPIRE_HOURS),
            last_password_change=now,
            created_at=now,
        )
        db.add(new_user)
        try:
            await db.commit()
        except IntegrityError:
            # Lost a race against a concurrent registration of the same email
            await db.rollback()
            raise EmailAlreadyRegistered()
        await db.refresh(new_user)

        logger.info(f"User registered: {new_user.email}")

        if background_tasks is not None:
            background_tasks.add_task(
                self.mailer.send_verification_email,
                new_user.email,
                new_user.full_name or new_user.email,
                verification_token
            )

        refresh_token, session = await self.sessions.create_session(new_user, device_info)
        return new_user, self.mint_access_token(new_user, session), refresh_token

    async def login(
        self,
        login_data: UserLogin,
        device_info: DeviceInfo,
        db: AsyncSession,
        background_tasks: Optional[BackgroundTasks] = None
    ) -> Tuple[User, str, str]:
        """Authenticate with email and password; returns (user, access token, refresh token)"""
        result = await db.execute(select(User).where(User.email == login_data.email))
        user = result.scalar_one_or_none()

        if not user:
            # Same hashing cost as a wrong password, same error
            self.hasher.burn_verification(login_data.password)
            await self._record_login_attempt(login_data.email, device_info, False, "Unknown email", db)
            raise InvalidCredentials()

        # Lock check comes before the password check
        if self.lockout.is_locked(user):
            await self._record_login_attempt(login_data.email, device_info, False, "Account locked", db)
            raise AccountLocked(self.lockout.locked_until(user))

        if not self.hasher.verify_password(login_data.password, user.password_hash):
            locked = await self.lockout.register_failure(user, db)
            await db.commit()
            await db.refresh(user)
            await self._record_login_attempt(login_data.email, device_info, False, "Invalid password", db)

            if locked:
                locked_until = as_utc(user.locked_until)
                # Background tasks are dropped with an error response, so this one is detached
                self._detach(self.mailer.send_account_locked_email(
                    user.email,
                    user.full_name or user.email,
                    locked_until
                ))
                raise AccountLocked(locked_until)
            raise InvalidCredentials()

        if not user.is_active:
            await self._record_login_attempt(login_data.email, device_info, False, "Account inactive", db)
            raise AccountInactive()

        # Check if password needs rehashing
        if self.hasher.needs_rehash(user.password_hash):
            user.password_hash = self.hasher.hash_password(login_data.password)
            logger.info(f"Password hash upgraded for {user.email}")

        self.lockout.register_success(user)
        await db.commit()
        await self._record_login_attempt(login_data.email, device_info, True, None, db)

        refresh_token, session = await self.sessions.create_session(user, device_info)

        logger.info(f"User logged in: {user.email}")
        return user, self.mint_access_token(user, session), refresh_token

    async def refresh_tokens(
        self,
        refresh_token: Optional[str],
        device_info: DeviceInfo,
        db: AsyncSession
    ) -> Tuple[str, Optional[str]]:
        """
        Exchange a refresh cookie for a new access token.

        Returns (access token, new refresh token). The refresh token is None
        unless the session was inside the rotation window and got rotated.
        """
        session = await self.sessions.find_valid(refresh_token)
        if session is None:
            raise RefreshInvalid()

        user = await self.get_user(session.user_id, db)
        if user is None or not user.is_active:
            await self.sessions.revoke(refresh_token)
            raise RefreshInvalid()

        new_refresh_token = None
        if session.seconds_remaining(self.clock.now()) < self.config.rotate_window_seconds:
            rotated = await self.sessions.rotate(session, device_info)
            if rotated is None:
                raise RefreshInvalid()
            new_refresh_token, session = rotated
        else:
            await self.sessions.touch_last_used(session.session_id)

        logger.info(f"Token refreshed for user: {user.email}")
        return self.mint_access_token(user, session), new_refresh_token

    async def logout(self, refresh_token: Optional[str]) -> None:
        await self.sessions.revoke(refresh_token)

    async def logout_all(self, user_id: str) -> int:
        return await self.sessions.revoke_all(user_id)

    async def list_sessions(
        self,
        user_id: str,
        current_refresh_token: Optional[str] = None
    ) -> List[Tuple[RefreshSession, bool]]:
        """Active sessions, most recently used first, flagged with whether each is the caller's"""
        current = await self.sessions.find_valid(current_refresh_token) if current_refresh_token else None
        current_id = current.session_id if current is not None else None

        sessions = await self.sessions.list_active(user_id)
        return [(session, session.session_id == current_id) for session in sessions]

    async def revoke_session(self, user_id: str, session_id: str) -> bool:
        return await self.sessions.revoke_session(user_id, session_id)

    async def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
        current_refresh_token: Optional[str],
        db: AsyncSession
    ) -> int:
        """Replace the password and sign out every other device; returns the revoked count"""
        user = await self.get_user(user_id, db)
        if user is None or not user.is_active:
            raise InvalidCredentials()

        if not self.hasher.verify_password(current_password, user.password_hash):
            raise InvalidCredentials("Current password is incorrect")

        if current_password == new_password:
            raise WeakPassword("New password must be different from current password")

        user_inputs = [user.email]
        if user.full_name:
            user_inputs.append(user.full_name)

        strength = self.validator.validate_password_strength(new_password, user_inputs=user_inputs)
        if not strength['valid']:
            raise WeakPassword(f"Password too weak: {strength['feedback']}")

        user.password_hash = self.hasher.hash_password(new_password)
        user.last_password_change = self.clock.now()
        await db.commit()

        revoked = await self.sessions.revoke_others(user.user_id, current_refresh_token)
        logger.info(f"Password changed for user: {user.email}")
        return revoked

    async def verify_email(self, token: str, db: AsyncSession) -> User:
        result = await db.execute(
            select(User).where(
                and_(
                    User.verification_token == token,
                    User.email_verified == False  # noqa: E712
                )
            )
        )
        user = result.scalar_one_or_none()
        now = self.clock.now()

        expires = as_utc(user.verification_token_expires) if user else None
        if expires is None or expires < now:
            raise VerificationTokenInvalid()

        user.email_verified = True
        user.email_verified_at = now
        user.verification_token = None
        user.verification_token_expires = None
        await db.commit()
        await db.refresh(user)

        logger.info(f"Email verified for user: {user.email}")
        return user

    async def resend_verification(
        self,
        email: str,
        db: AsyncSession,
        background_tasks: Optional[BackgroundTasks] = None
    ) -> None:
        """
        Issue a fresh verification token and mail it in the background.

        Unknown addresses return quietly so the endpoint cannot be used to
        enumerate accounts; verified accounts are rejected.
        """
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        if user is None:
            return
        if user.email_verified:
            raise EmailAlreadyVerified()

        verification_token = self.hasher.generate_secure_token(32)
        user.verification_token = verification_token
        user.verification_token_expires = self.clock.now() + timedelta(
            hours=settings.EMAIL_VERIFICATION_TOKEN_EXPIRE_HOURS
        )
        await db.commit()

        if background_tasks is not None:
            background_tasks.add_task(
                self.mailer.send_verification_email,
                user.email,
                user.full_name or user.email,
                verification_token
            )
        logger.info(f"Verification email re-issued for {user.email}")

    async def get_profile(self, user_id: str, db: AsyncSession) -> Tuple[User, int]:
        user = await self.get_user(user_id, db)
        if user is None or not user.is_active:
            raise InvalidCredentials("User not found or inactive")

        result = await db.execute(
            select(func.count(RefreshSession.session_id)).where(
                and_(
                    RefreshSession.user_id == user.user_id,
                    RefreshSession.is_revoked == False,  # noqa: E712
                    RefreshSession.expires_at > self.clock.now()
                )
            )
        )
        return user, result.scalar_one()

    async def get_user(self, user_id, db: AsyncSession) -> Optional[User]:
        user_uuid = to_uuid(user_id)
        if user_uuid is None:
            return None
        result = await db.execute(select(User).where(User.user_id == user_uuid))
        return result.scalar_one_or_none()

    def _detach(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _record_login_attempt(
        self,
        email: str,
        device_info: DeviceInfo,
        success: bool,
        failure_reason: Optional[str],
        db: AsyncSession
    ) -> None:
        """Record login attempt for security monitoring"""
        attempt = LoginAttempt(
            email=email,
            ip_address=device_info.ip_address,
            user_agent=device_info.user_agent,
            success=success,
            failure_reason=failure_reason,
            attempted_at=self.clock.now()
        )
        db.add(attempt)
        await db.commit()
