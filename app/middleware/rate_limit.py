from typing import Any, Dict, Tuple
import redis.asyncio as aioredis
import logging

from config import Settings
from app.core.clock import Clock, system_clock
from app.core.redis_keys import redis_key

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Fixed-window request counter in Redis with escalating backoff.

    Every rejected request counts as a violation, and each violation halves
    the allowance for the next hour. Enough violations ban the identifier
    outright for a while.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        rate_limit: int = 10,
        backoff_base: float = 2.0,
        max_violations: int = 5,
        ban_duration_minutes: int = 60,
        clock: Clock = system_clock,
    ):
        self.redis = redis_client
        self.rate_limit = rate_limit
        self.backoff_base = backoff_base
        self.max_violations = max_violations
        self.ban_duration = ban_duration_minutes
        self.clock = clock

    @classmethod
    def from_settings(cls, redis_client: aioredis.Redis, app_settings: Settings, clock: Clock = system_clock) -> "RateLimiter":
        return cls(
            redis_client,
            rate_limit=app_settings.AUTH_RATE_LIMIT_PER_MINUTE,
            backoff_base=app_settings.RATE_LIMIT_BACKOFF_BASE,
            max_violations=app_settings.RATE_LIMIT_MAX_VIOLATIONS,
            ban_duration_minutes=app_settings.RATE_LIMIT_BAN_DURATION_MINUTES,
            clock=clock,
        )

    async def check_rate_limit(self, identifier: str) -> Tuple[bool, Dict[str, Any]]:
        current_time = int(self.clock.now().timestamp())
        minute_key = redis_key("rate_limit", identifier, current_time // 60)
        violation_key = redis_key("violations", identifier)
        ban_key = redis_key("ban", identifier)

        if await self.redis.exists(ban_key):
            ban_ttl = await self.redis.ttl(ban_key)
            return False, {
                "error": "Too many violations - temporary ban",
                "retry_after": max(ban_ttl, 1),
                "reason": "repeated_violations",
                "banned": True
            }

        count = await self.redis.get(minute_key)
        current_count = int(count) if count else 0

        violations = await self.redis.get(violation_key)
        violation_count = int(violations) if violations else 0

        # Allowance shrinks exponentially with recent violations
        effective_limit = self.rate_limit
        if violation_count > 0:
            effective_limit = max(1, int(self.rate_limit / (self.backoff_base ** violation_count)))

        if current_count >= effective_limit:
            await self.redis.incr(violation_key)
            await self.redis.expire(violation_key, 3600)
            new_violation_count = violation_count + 1

            if new_violation_count >= self.max_violations:
                await self.redis.setex(ban_key, self.ban_duration * 60, "banned")
                logger.warning(f"Rate limiter: {identifier} banned for {self.ban_duration} minutes")
                return False, {
                    "error": "Rate limit exceeded - banned",
                    "limit": effective_limit,
                    "retry_after": self.ban_duration * 60,
                    "reason": "max_violations_reached",
                    "banned": True,
                    "violations": new_violation_count
                }

            backoff_seconds = int(60 * (self.backoff_base ** violation_count))
            return False, {
                "error": "Rate limit exceeded",
                "limit": effective_limit,
                "remaining": 0,
                "retry_after": backoff_seconds,
                "violations": new_violation_count,
                "reason": "rate_limit_exceeded"
            }

        await self.redis.incr(minute_key)
        await self.redis.expire(minute_key, 60)

        return True, {
            "limit": effective_limit,
            "remaining": effective_limit - current_count - 1,
            "reset": ((current_time // 60) + 1) * 60
        }

