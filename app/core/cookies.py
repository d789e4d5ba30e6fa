from typing import Optional
from fastapi import Request
from starlette.responses import Response

from config import AuthConfig


def set_refresh_cookie(response: Response, refresh_token: str, config: AuthConfig) -> None:
    response.set_cookie(
        key=config.refresh_cookie_name,
        value=refresh_token,
        max_age=int(config.refresh_ttl.total_seconds()),
        path=config.cookie_path,
        domain=config.cookie_domain,
        secure=config.cookie_secure,
        httponly=True,
        samesite=config.cookie_samesite,
    )


def clear_refresh_cookie(response: Response, config: AuthConfig) -> None:
    response.delete_cookie(
        key=config.refresh_cookie_name,
        path=config.cookie_path,
        domain=config.cookie_domain,
        secure=config.cookie_secure,
        httponly=True,
        samesite=config.cookie_samesite,
    )


def current_refresh_token(request: Request, config: AuthConfig) -> Optional[str]:
    """The caller's refresh token, preferring one rotated earlier in this request"""
    rotated = getattr(request.state, "rotated_refresh_token", None)
    return rotated or request.cookies.get(config.refresh_cookie_name)
