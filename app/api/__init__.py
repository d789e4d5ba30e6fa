from fastapi import APIRouter

from app.core.route_access import RouteAccessTable


def include_routers(routes: RouteAccessTable, prefix: str) -> APIRouter:
    """Build the versioned API router and declare its public endpoints"""
    from app.api.auth import router as auth_router, PUBLIC_ENDPOINTS as AUTH_PUBLIC

    api_router = APIRouter()
    api_router.include_router(auth_router, tags=["Authentication"])

    routes.mark_router_public(auth_router, prefix, AUTH_PUBLIC)

    return api_router
