from typing import Optional
from datetime import datetime
from sqlalchemy import update, or_
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from config import AuthConfig
from app.core.clock import Clock, system_clock, as_utc
from app.models.user import User

logger = logging.getLogger(__name__)


class AccountLockoutPolicy:
    """Temporary lockout after repeated failed logins, driven by the user's counters"""

    def __init__(self, config: AuthConfig, clock: Clock = system_clock):
        self.max_attempts = config.max_login_attempts
        self.lock_duration = config.lockout_duration
        self.clock = clock

    def is_locked(self, user: User) -> bool:
        return user.is_locked(self.clock.now())

    def locked_until(self, user: User) -> Optional[datetime]:
        return as_utc(user.locked_until) if self.is_locked(user) else None

    async def register_failure(self, user: User, db: AsyncSession) -> bool:
        """
        Count a failed attempt; True when this failure locked the account.

        The counter is incremented in SQL so concurrent failures cannot
        overwrite each other. The counter is not reset on lock, so a failure
        after the lock expires locks again straight away. Changes are left
        for the caller to commit; the in-memory user is stale until refreshed.
        """
        now = self.clock.now()
        result = await db.execute(
            update(User)
            .where(User.user_id == user.user_id)
            .values(
                failed_login_attempts=User.failed_login_attempts + 1,
                last_failed_login=now
            )
            .returning(User.failed_login_attempts)
            .execution_options(synchronize_session=False)
        )
        attempts = result.scalar_one()
        if attempts < self.max_attempts:
            return False

        # Only one of several racing failures sets the lock
        result = await db.execute(
            update(User)
            .where(
                User.user_id == user.user_id,
                or_(User.locked_until.is_(None), User.locked_until <= now)
            )
            .values(locked_until=now + self.lock_duration)
            .execution_options(synchronize_session=False)
        )
        locked = result.rowcount == 1
        if locked:
            logger.warning(f"Account locked for {user.email} after {attempts} failed attempts")
        return locked

    def register_success(self, user: User) -> None:
        user.reset_failed_attempts()
        user.last_login_at = self.clock.now()
