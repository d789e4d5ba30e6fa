"""
Request-scoped dependencies resolved from the components built in create_app
"""
from typing import AsyncGenerator
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from config import AuthConfig
from app.core.exceptions import TokenInvalid
from app.core.jwt import AccessClaims
from app.services.auth_service import AuthService


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_auth_config(request: Request) -> AuthConfig:
    return request.app.state.auth_config


def get_current_claims(request: Request) -> AccessClaims:
    """Identity established by AuthenticationMiddleware for this request"""
    claims = getattr(request.state, "claims", None)
    if claims is None:
        raise TokenInvalid("Missing authentication token")
    return claims


def get_current_user_id(request: Request) -> str:
    return get_current_claims(request).subject
