"""
Dependency-based rate limiting for the credential endpoints
"""
from typing import Optional
from fastapi import Request
from redis.exceptions import RedisError
import logging

from app.core.exceptions import RateLimited
from app.middleware.rate_limit import RateLimiter
from app.services.device_info import client_ip

logger = logging.getLogger(__name__)


def get_rate_limiter(request: Request) -> Optional[RateLimiter]:
    """None when rate limiting is disabled or Redis was unreachable at startup"""
    return getattr(request.app.state, "rate_limiter", None)


async def check_auth_rate_limit(request: Request) -> None:
    """
    Throttle register, login and similar endpoints per client ip and endpoint

    Usage:
        @router.post("/login", dependencies=[Depends(check_auth_rate_limit)])
    """
    limiter = get_rate_limiter(request)
    if limiter is None:
        return None

    identifier = _get_identifier(request)
    try:
        allowed, metadata = await limiter.check_rate_limit(identifier)
    except RedisError as e:
        # Per-account lockout still applies without Redis
        logger.warning(f"Rate limiter unavailable, allowing request: {e}")
        return None

    if not allowed:
        logger.warning(f"Rate limit exceeded for {identifier}: {metadata.get('reason')}")
        raise RateLimited(
            metadata.get("error"),
            retry_after=metadata.get("retry_after", 60),
            limit=metadata.get("limit", limiter.rate_limit),
        )

    request.state.rate_limit_metadata = metadata
    return None


def _get_identifier(request: Request) -> str:
    endpoint = request.url.path.rstrip("/").rsplit("/", 1)[-1]
    return f"{endpoint}:ip:{client_ip(request) or 'unknown'}"
