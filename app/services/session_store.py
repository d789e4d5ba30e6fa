"""
Refresh Session Store
Persistence for refresh sessions; every method runs in its own transaction
"""
import uuid
from datetime import datetime
from typing import List, Optional, Union
from sqlalchemy import select, update, delete, and_
from sqlalchemy.ext.asyncio import async_sessionmaker
import logging

from app.models.user import RefreshSession

logger = logging.getLogger(__name__)


def to_uuid(value: Union[str, uuid.UUID, None]) -> Optional[uuid.UUID]:
    """Parse an identifier; malformed values are treated as not found"""
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, AttributeError, TypeError):
        return None


class RefreshSessionStore:
    """Keyed by the hash of the refresh token, never by the raw value"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def insert(self, session: RefreshSession) -> RefreshSession:
        async with self.session_factory() as db:
            db.add(session)
            await db.commit()
        return session

    async def get_by_hash(self, token_hash: str) -> Optional[RefreshSession]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(RefreshSession).where(RefreshSession.token_hash == token_hash)
            )
            return result.scalar_one_or_none()

    async def touch(self, session_id, now: datetime) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(RefreshSession)
                .where(RefreshSession.session_id == to_uuid(session_id))
                .values(last_used_at=now)
            )
            await db.commit()

    async def revoke_by_hash(self, token_hash: str, now: datetime) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                update(RefreshSession)
                .where(
                    and_(
                        RefreshSession.token_hash == token_hash,
                        RefreshSession.is_revoked == False  # noqa: E712
                    )
                )
                .values(is_revoked=True, revoked_at=now)
            )
            await db.commit()
            return result.rowcount > 0

    async def revoke_all(self, user_id, now: datetime) -> int:
        return await self._revoke_where(
            now,
            RefreshSession.user_id == to_uuid(user_id),
        )

    async def revoke_others(self, user_id, keep_session_id, now: datetime) -> int:
        conditions = [RefreshSession.user_id == to_uuid(user_id)]
        keep = to_uuid(keep_session_id)
        if keep is not None:
            conditions.append(RefreshSession.session_id != keep)
        return await self._revoke_where(now, *conditions)

    async def revoke_by_id_owner(self, session_id, user_id, now: datetime) -> bool:
        session_uuid = to_uuid(session_id)
        if session_uuid is None:
            return False
        count = await self._revoke_where(
            now,
            RefreshSession.session_id == session_uuid,
            RefreshSession.user_id == to_uuid(user_id),
        )
        return count > 0

    async def list_active(self, user_id, now: datetime) -> List[RefreshSession]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(RefreshSession)
                .where(
                    and_(
                        RefreshSession.user_id == to_uuid(user_id),
                        RefreshSession.is_revoked == False,  # noqa: E712
                        RefreshSession.expires_at > now
                    )
                )
                .order_by(
                    RefreshSession.last_used_at.desc().nulls_last(),
                    RefreshSession.created_at.desc()
                )
            )
            return list(result.scalars().all())

    async def enforce_cap(self, user_id, max_active: int, now: datetime) -> int:
        """Revoke the oldest active sessions so one more fits under max_active"""
        async with self.session_factory() as db:
            result = await db.execute(
                select(RefreshSession.session_id)
                .where(
                    and_(
                        RefreshSession.user_id == to_uuid(user_id),
                        RefreshSession.is_revoked == False,  # noqa: E712
                        RefreshSession.expires_at > now
                    )
                )
                .order_by(RefreshSession.created_at.asc())
            )
            active_ids = list(result.scalars().all())

            excess = len(active_ids) - max_active + 1
            if excess <= 0:
                return 0

            await db.execute(
                update(RefreshSession)
                .where(RefreshSession.session_id.in_(active_ids[:excess]))
                .values(is_revoked=True, revoked_at=now)
            )
            await db.commit()
            return excess

    async def delete_expired(self, now: datetime) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                delete(RefreshSession).where(RefreshSession.expires_at < now)
            )
            await db.commit()
            return result.rowcount or 0

    async def rotate(
        self,
        old_hash: str,
        replacement: RefreshSession,
        now: datetime
    ) -> Optional[RefreshSession]:
        """
        Revoke the old session and insert its replacement in one transaction.

        The revoke is conditional on the old session still being live, so of two
        concurrent rotations of the same token exactly one inserts a replacement.
        Returns None for the loser.
        """
        async with self.session_factory() as db:
            result = await db.execute(
                update(RefreshSession)
                .where(
                    and_(
                        RefreshSession.token_hash == old_hash,
                        RefreshSession.is_revoked == False,  # noqa: E712
                        RefreshSession.expires_at > now
                    )
                )
                .values(is_revoked=True, revoked_at=now)
            )
            if result.rowcount != 1:
                await db.rollback()
                return None

            db.add(replacement)
            await db.commit()
        return replacement

    async def _revoke_where(self, now: datetime, *conditions) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                update(RefreshSession)
                .where(and_(RefreshSession.is_revoked == False, *conditions))  # noqa: E712
                .values(is_revoked=True, revoked_at=now)
            )
            await db.commit()
            return result.rowcount or 0
