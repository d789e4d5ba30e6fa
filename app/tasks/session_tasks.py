import asyncio
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import async_sessionmaker
import logging

from app.celery_config import celery_app
from app.core.clock import Clock, system_clock
from app.core.jwt import TokenIssuer
from app.core.redis_keys import redis_key
from app.services.session_manager import SessionManager
from config import settings

logger = logging.getLogger(__name__)
SWEEP_LOCK_KEY = redis_key("sessions", "cleanup", "lock")
SWEEP_LOCK_TTL_SECONDS = 300


async def _acquire_sweep_lock() -> Tuple[Optional[aioredis.Redis], Optional[str], bool]:
    """Take the sweep lock; runs anyway without it when Redis is unreachable"""
    try:
        redis_client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            max_connections=2,
        )
        token = secrets.token_hex(16)
        acquired = await redis_client.set(SWEEP_LOCK_KEY, token, ex=SWEEP_LOCK_TTL_SECONDS, nx=True)
        if acquired:
            return redis_client, token, True
        await redis_client.close()
        return None, None, False
    except Exception as exc:
        logger.warning("Sweep lock unavailable, sweeping without it: %s", exc)
        return None, None, True


async def _release_sweep_lock(redis_client: aioredis.Redis, token: str) -> None:
    try:
        await redis_client.eval(
            "if redis.call('get', KEYS[1]) == ARGV[1] then "
            "return redis.call('del', KEYS[1]) else return 0 end",
            1,
            SWEEP_LOCK_KEY,
            token,
        )
    except Exception as exc:
        logger.warning("Failed to release sweep lock: %s", exc)
    finally:
        await redis_client.close()


@celery_app.task(
    name='app.tasks.session_tasks.cleanup_expired_sessions',
    bind=True,
)
def cleanup_expired_sessions(self):
    """
    Celery task to hard-delete refresh sessions past their expiry

    Failures are logged and left for the next scheduled run.
    """
    return asyncio.run(_async_cleanup_expired_sessions())


async def _async_cleanup_expired_sessions(
    session_factory: Optional[async_sessionmaker] = None,
    clock: Clock = system_clock,
    use_lock: bool = True,
) -> Dict[str, Any]:
    lock_client: Optional[aioredis.Redis] = None
    lock_token: Optional[str] = None
    if use_lock:
        lock_client, lock_token, should_run = await _acquire_sweep_lock()
        if not should_run:
            logger.info("Skipping session sweep because another sweep holds the lock")
            return {'status': 'skipped', 'deleted': 0}

    try:
        if session_factory is not None:
            deleted = await _sweep(session_factory, clock)
        else:
            from app.core.database import task_session_factory
            async with task_session_factory() as factory:
                deleted = await _sweep(factory, clock)

        return {
            'status': 'success',
            'deleted': deleted,
            'timestamp': datetime.now(timezone.utc).isoformat()
        }
    except Exception as e:
        logger.error(f"Error in session sweep, retrying on next schedule: {e}", exc_info=True)
        return {'status': 'error', 'deleted': 0, 'error': str(e)}
    finally:
        if lock_client is not None and lock_token is not None:
            await _release_sweep_lock(lock_client, lock_token)


async def _sweep(session_factory: async_sessionmaker, clock: Clock) -> int:
    config = settings.auth_config()
    manager = SessionManager(config, TokenIssuer(config, clock), session_factory, clock)
    return await manager.cleanup_expired()
