from datetime import datetime
from typing import Dict, Optional
from fastapi import HTTPException, status


BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


class AuthError(HTTPException):
    """HTTP error with a stable machine-readable reason code"""

    code = "auth_error"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Authentication failed"

    def __init__(self, detail: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        if headers is None and self.status_code == status.HTTP_401_UNAUTHORIZED:
            headers = BEARER_CHALLENGE
        super().__init__(
            status_code=self.status_code,
            detail=detail or self.message,
            headers=headers,
        )


class InvalidCredentials(AuthError):
    """Wrong email or wrong password, deliberately indistinguishable"""

    code = "invalid_credentials"
    message = "Incorrect email or password"


class AccountLocked(AuthError):
    code = "account_locked"
    status_code = status.HTTP_403_FORBIDDEN
    message = "Account temporarily locked due to too many failed login attempts"

    def __init__(self, locked_until: Optional[datetime] = None):
        self.locked_until = locked_until
        detail = self.message
        if locked_until is not None:
            detail = f"{self.message}. Try again after {locked_until.isoformat()}"
        super().__init__(detail)


class TokenExpired(AuthError):
    code = "token_expired"
    message = "Token has expired"


class TokenInvalid(AuthError):
    code = "token_invalid"
    message = "Could not validate token"


class RefreshInvalid(AuthError):
    """Refresh session missing, revoked or expired"""

    code = "refresh_invalid"
    message = "Refresh session is invalid or has expired"


class EmailAlreadyRegistered(AuthError):
    code = "email_taken"
    status_code = status.HTTP_409_CONFLICT
    message = "Email already registered"


class WeakPassword(AuthError):
    code = "weak_password"
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Password too weak"


class VerificationTokenInvalid(AuthError):
    code = "verification_invalid"
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid or expired verification token"


class AccountInactive(AuthError):
    code = "account_inactive"
    status_code = status.HTTP_403_FORBIDDEN
    message = "Account is inactive"


class EmailAlreadyVerified(AuthError):
    code = "already_verified"
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Email already verified"


class RateLimited(AuthError):
    code = "rate_limited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    message = "Too many requests"

    def __init__(self, detail: Optional[str] = None, retry_after: int = 60, limit: int = 0):
        self.retry_after = retry_after
        super().__init__(
            detail,
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
        )
