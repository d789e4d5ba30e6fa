from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any, Union
from jose import jwt, JWTError
from config import AuthConfig
from app.core.clock import Clock, system_clock
from app.core.exceptions import TokenExpired, TokenInvalid
import logging
import secrets

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class AccessClaims:
    """Identity carried by an access token. Never persisted."""
    subject: str
    email: str
    role: str
    issued_at: datetime
    expires_at: datetime
    session_id: Optional[str] = None

    def identity(self) -> Dict[str, Any]:
        claims = {"sub": self.subject, "email": self.email, "role": self.role}
        if self.session_id:
            claims["sid"] = self.session_id
        return claims


@dataclass(frozen=True)
class RefreshClaims:
    subject: str
    token_id: str
    issued_at: datetime
    expires_at: datetime


class TokenIssuer:
    """
    Stateless signer/verifier for the two token families.

    Access and refresh tokens are signed with independent secrets and carry a
    ``type`` claim, so a token of one family never verifies as the other.
    Expiry is checked against the injected clock rather than inside jose.
    """

    def __init__(self, config: AuthConfig, clock: Clock = system_clock):
        self.algorithm = config.algorithm
        self.access_ttl = config.access_ttl
        self.refresh_ttl = config.refresh_ttl
        self._secrets = {ACCESS: config.access_secret, REFRESH: config.refresh_secret}
        self._clock = clock

    def sign_access(self, claims: Dict[str, Any], ttl: Optional[timedelta] = None) -> str:
        if not claims.get("sub"):
            raise ValueError("Access token requires a subject")
        return self._sign(claims, ACCESS, ttl or self.access_ttl)

    def sign_refresh(self, claims: Dict[str, Any], ttl: Optional[timedelta] = None) -> str:
        if not claims.get("sub") or not claims.get("jti"):
            raise ValueError("Refresh token requires a subject and a token id")
        return self._sign(claims, REFRESH, ttl or self.refresh_ttl)

    def verify(
        self,
        token: Optional[str],
        which: str = ACCESS,
        verify_exp: bool = True,
    ) -> Union[AccessClaims, RefreshClaims]:
        """Verify signature, type and expiry; raise TokenInvalid or TokenExpired"""
        if which not in self._secrets:
            raise ValueError(f"Unknown token type: {which}")
        if not token or not isinstance(token, str):
            raise TokenInvalid("Missing authentication token")

        try:
            payload = jwt.decode(
                token,
                self._secrets[which],
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            logger.debug(f"{which} token decode error: {e}")
            raise TokenInvalid()

        if payload.get("type") != which:
            raise TokenInvalid(f"Invalid token type. Expected {which} token")

        exp = payload.get("exp")
        iat = payload.get("iat")
        subject = payload.get("sub")
        if not isinstance(exp, (int, float)) or not isinstance(iat, (int, float)) or not subject:
            raise TokenInvalid("Token is missing required claims")

        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        issued_at = datetime.fromtimestamp(iat, tz=timezone.utc)
        if verify_exp and expires_at <= self._clock.now():
            raise TokenExpired()

        if which == REFRESH:
            token_id = payload.get("jti")
            if not token_id:
                raise TokenInvalid("Token is missing required claims")
            return RefreshClaims(
                subject=str(subject),
                token_id=str(token_id),
                issued_at=issued_at,
                expires_at=expires_at,
            )

        return AccessClaims(
            subject=str(subject),
            email=str(payload.get("email", "")),
            role=str(payload.get("role", "user")),
            issued_at=issued_at,
            expires_at=expires_at,
            session_id=payload.get("sid"),
        )

    def _sign(self, claims: Dict[str, Any], which: str, ttl: timedelta) -> str:
        now = self._clock.now()
        expire = now + ttl

        to_encode = dict(claims)
        to_encode.update({
            "type": which,
            "iat": int(now.timestamp()),
            "exp": int(expire.timestamp()),
        })
        if which == ACCESS:
            to_encode.setdefault("jti", self._generate_jti())

        return jwt.encode(to_encode, self._secrets[which], algorithm=self.algorithm)

    @staticmethod
    def _generate_jti() -> str:
        """Generate unique token ID"""
        return secrets.token_urlsafe(16)
