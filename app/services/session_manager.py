"""
Session Manager
Business operations over the refresh session store and the token issuer
"""
import asyncio
import hashlib
import secrets
from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import async_sessionmaker
import logging

from config import AuthConfig
from app.core.clock import Clock, system_clock
from app.core.exceptions import AuthError
from app.core.jwt import TokenIssuer, REFRESH
from app.models.user import User, RefreshSession
from app.services.device_info import DeviceInfo
from app.services.session_store import RefreshSessionStore

logger = logging.getLogger(__name__)


def hash_token_id(token_id: str) -> str:
    return hashlib.sha256(token_id.encode("utf-8")).hexdigest()


class SessionManager:
    """
    Creates, validates, rotates and revokes refresh sessions.

    The value handed to the client is a refresh JWT whose ``jti`` is a fresh
    random token id. Only the sha256 of that id is persisted, so a leaked
    database row cannot be replayed as a cookie.
    """

    def __init__(
        self,
        config: AuthConfig,
        issuer: TokenIssuer,
        session_factory: async_sessionmaker,
        clock: Clock = system_clock,
    ):
        self.config = config
        self.issuer = issuer
        self.store = RefreshSessionStore(session_factory)
        self.clock = clock

    async def _io(self, coro):
        return await asyncio.wait_for(coro, timeout=self.config.store_timeout_seconds)

    def _new_session(
        self,
        user_id,
        device_info: Optional[DeviceInfo],
        in_use: bool = False
    ) -> Tuple[str, RefreshSession]:
        now = self.clock.now()
        expires_at = now + self.config.refresh_ttl
        token_id = secrets.token_urlsafe(32)
        device_info = device_info or DeviceInfo()

        session = RefreshSession(
            token_hash=hash_token_id(token_id),
            user_id=user_id,
            user_agent=device_info.user_agent,
            ip_address=device_info.ip_address,
            device_type=device_info.device_type,
            device_name=device_info.device_name,
            created_at=now,
            last_used_at=now if in_use else None,
            expires_at=expires_at,
        )
        token = self.issuer.sign_refresh(
            {"sub": str(user_id), "jti": token_id},
            ttl=self.config.refresh_ttl,
        )
        return token, session

    def _hash_from_token(self, token: Optional[str], verify_exp: bool = True) -> Optional[Tuple[str, str]]:
        """Return (subject, token hash) for a well-signed refresh token, else None"""
        if not token:
            return None
        try:
            claims = self.issuer.verify(token, REFRESH, verify_exp=verify_exp)
        except AuthError:
            return None
        return claims.subject, hash_token_id(claims.token_id)

    async def create_session(
        self,
        user: User,
        device_info: Optional[DeviceInfo] = None
    ) -> Tuple[str, RefreshSession]:
        """Persist a new refresh session; returns the cookie value and the record"""
        now = self.clock.now()
        capped = await self._io(
            self.store.enforce_cap(user.user_id, self.config.max_active_sessions, now)
        )
        if capped:
            logger.info(f"Revoked {capped} oldest session(s) for user {user.user_id} (session cap)")

        token, session = self._new_session(user.user_id, device_info)
        await self._io(self.store.insert(session))

        logger.info(f"Refresh session created for user {user.user_id} ({session.device_type or 'unknown'})")
        return token, session

    async def find_valid(self, token: Optional[str]) -> Optional[RefreshSession]:
        """The session behind a cookie value, or None if missing, revoked or expired"""
        parsed = self._hash_from_token(token)
        if parsed is None:
            return None
        subject, token_hash = parsed

        session = await self._io(self.store.get_by_hash(token_hash))
        if session is None or str(session.user_id) != subject:
            return None
        if not session.is_valid(self.clock.now()):
            return None
        return session

    async def touch_last_used(self, session_id) -> None:
        """Best effort; never raises"""
        try:
            await self._io(self.store.touch(session_id, self.clock.now()))
        except Exception as e:
            logger.warning(f"Could not update last_used_at for session {session_id}: {e}")

    async def revoke(self, token: Optional[str]) -> None:
        """Idempotent; unknown, expired or already revoked tokens are a no-op"""
        parsed = self._hash_from_token(token, verify_exp=False)
        if parsed is None:
            return
        _, token_hash = parsed
        if await self._io(self.store.revoke_by_hash(token_hash, self.clock.now())):
            logger.info("Refresh session revoked")

    async def revoke_all(self, user_id) -> int:
        count = await self._io(self.store.revoke_all(user_id, self.clock.now()))
        logger.info(f"Revoked {count} session(s) for user {user_id}")
        return count

    async def revoke_others(self, user_id, except_token: Optional[str]) -> int:
        keep_id = None
        parsed = self._hash_from_token(except_token, verify_exp=False)
        if parsed is not None:
            current = await self._io(self.store.get_by_hash(parsed[1]))
            if current is not None and str(current.user_id) == str(user_id):
                keep_id = current.session_id

        count = await self._io(self.store.revoke_others(user_id, keep_id, self.clock.now()))
        logger.info(f"Revoked {count} other session(s) for user {user_id}")
        return count

    async def revoke_session(self, user_id, session_id) -> bool:
        """Ownership-checked revoke; False when the session is unknown or not the caller's"""
        revoked = await self._io(
            self.store.revoke_by_id_owner(session_id, user_id, self.clock.now())
        )
        if revoked:
            logger.info(f"Session {session_id} revoked by user {user_id}")
        return revoked

    async def list_active(self, user_id) -> List[RefreshSession]:
        return await self._io(self.store.list_active(user_id, self.clock.now()))

    async def cleanup_expired(self) -> int:
        """Hard-delete every session past its expiry, revoked or not"""
        count = await self.store.delete_expired(self.clock.now())
        logger.info(f"Cleaned up {count} expired refresh session(s)")
        return count

    async def rotate(
        self,
        session: RefreshSession,
        device_info: Optional[DeviceInfo] = None
    ) -> Optional[Tuple[str, RefreshSession]]:
        """
        Replace a session with a new one for the same user and device.

        The old session is revoked and the new one inserted in a single
        transaction. If the old session was already revoked by a concurrent
        rotation, nothing is issued and None is returned; that client has to
        log in again.
        """
        if device_info is None:
            device_info = DeviceInfo(
                user_agent=session.user_agent,
                ip_address=session.ip_address,
                device_type=session.device_type,
                device_name=session.device_name,
            )

        # The replacement is being used by this very request
        token, replacement = self._new_session(session.user_id, device_info, in_use=True)
        rotated = await self._io(
            self.store.rotate(session.token_hash, replacement, self.clock.now())
        )
        if rotated is None:
            logger.warning(f"Rotation lost for session {session.session_id}; already revoked")
            return None

        logger.info(f"Refresh session {session.session_id} rotated to {rotated.session_id}")
        return token, rotated
