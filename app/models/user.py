from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, Text, Uuid, false
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import uuid

from app.core.clock import as_utc
from app.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """User credential record with lockout counters"""
    __tablename__ = "users"

    # Primary key
    user_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Authentication
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, default="user")

    full_name = Column(String(255))

    # Account status
    is_active = Column(Boolean, nullable=False, default=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    email_verified_at = Column(DateTime(timezone=True))
    verification_token = Column(String(255), unique=True, index=True)
    verification_token_expires = Column(DateTime(timezone=True))

    # Lockout
    failed_login_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True))
    last_failed_login = Column(DateTime(timezone=True))
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    last_password_change = Column(DateTime(timezone=True))

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    sessions = relationship("RefreshSession", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(id={self.user_id}, email={self.email})>"

    def is_locked(self, now: datetime) -> bool:
        """Locked while locked_until lies in the future; never cleared implicitly"""
        locked_until = as_utc(self.locked_until)
        return locked_until is not None and locked_until > now

    def reset_failed_attempts(self) -> None:
        self.failed_login_attempts = 0
        self.locked_until = None
        self.last_failed_login = None


class RefreshSession(Base):
    """One persisted refresh session per logged-in device"""
    __tablename__ = "refresh_sessions"
    __table_args__ = (
        Index("ix_refresh_sessions_user_revoked", "user_id", "is_revoked"),
    )

    # Primary key
    session_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # sha256 of the opaque token value; the raw value only lives in the client cookie
    token_hash = Column(String(64), unique=True, index=True, nullable=False)

    # Foreign key to users table
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)

    # Session status
    is_revoked = Column(Boolean, nullable=False, default=False, server_default=false())
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    # Device info, display only
    user_agent = Column(String(500), nullable=True)
    ip_address = Column(String(45), nullable=True)
    device_type = Column(String(20), nullable=True)
    device_name = Column(String(100), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    # Relationship
    user = relationship("User", back_populates="sessions")

    def __repr__(self):
        return f"<RefreshSession(id={self.session_id}, user_id={self.user_id}, revoked={self.is_revoked})>"

    def is_valid(self, now: datetime) -> bool:
        return not self.is_revoked and as_utc(self.expires_at) > now

    def seconds_remaining(self, now: datetime) -> float:
        return (as_utc(self.expires_at) - now).total_seconds()


class LoginAttempt(Base):
    """Track login attempts for security monitoring"""

    __tablename__ = "login_attempts"

    attempt_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Attempt Details
    email = Column(String(255), nullable=False, index=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text)

    # Result
    success = Column(Boolean, nullable=False)
    failure_reason = Column(String(255))

    # Timestamps
    attempted_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<LoginAttempt {self.email} at {self.attempted_at}>"
