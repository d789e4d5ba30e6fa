from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy import text
import redis.asyncio as aioredis
import logging

from config import AuthConfig, Settings, settings
from app.core.clock import Clock, system_clock
from app.core.jwt import TokenIssuer
from app.core.password import PasswordHasher, pwd_hasher
from app.core.route_access import RouteAccessTable
from app.middleware import CORSMiddleware, AuthenticationMiddleware
from app.middleware.rate_limit import RateLimiter
from app.services.auth_service import AuthService
from app.services.email_service import EmailService, email_service
from app.services.lockout import AccountLockoutPolicy
from app.services.session_manager import SessionManager

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    app_settings: Settings = app.state.settings

    # Startup
    logger.info(f"Starting {app_settings.APP_NAME} v{app_settings.APP_VERSION}")
    logger.info(f"Environment: {app_settings.ENVIRONMENT}")
    logger.info(
        f"Access TTL {app.state.auth_config.access_ttl}, refresh TTL {app.state.auth_config.refresh_ttl}, "
        f"rolling refresh below {app.state.auth_config.refresh_threshold_seconds}s"
    )
    logger.info(
        "Expired sessions are purged by Celery beat. "
        "Start worker with: celery -A app.celery_config:celery_app worker --beat --loglevel=info"
    )
    if app.state.rate_limiter is None and app_settings.RATE_LIMIT_ENABLED:
        try:
            redis_client = aioredis.from_url(
                app_settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                max_connections=app_settings.REDIS_MAX_CONNECTIONS
            )
            await redis_client.ping()
            app.state.redis_client = redis_client
            app.state.rate_limiter = RateLimiter.from_settings(redis_client, app_settings)
            logger.info(
                f"Rate limiting enabled: {app_settings.AUTH_RATE_LIMIT_PER_MINUTE}/min per client on credential endpoints"
            )
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Rate limiting will be disabled.")

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application")
    if app.state.redis_client is not None:
        await app.state.redis_client.close()
    if app.state.owns_engine:
        from app.core.database import close_db
        await close_db()
    logger.info("Application shutdown complete")


def create_app(
    app_settings: Settings = settings,
    session_factory: Optional[async_sessionmaker] = None,
    clock: Clock = system_clock,
    hasher: PasswordHasher = pwd_hasher,
    mailer: EmailService = email_service,
    auth_config: Optional[AuthConfig] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """Wire the auth components together and build the FastAPI application"""
    owns_engine = session_factory is None
    if session_factory is None:
        from app.core.database import AsyncSessionLocal
        session_factory = AsyncSessionLocal

    auth_config = auth_config or app_settings.auth_config()
    issuer = TokenIssuer(auth_config, clock)
    sessions = SessionManager(auth_config, issuer, session_factory, clock)
    lockout = AccountLockoutPolicy(auth_config, clock)
    routes = RouteAccessTable()

    app = FastAPI(
        title=app_settings.APP_NAME,
        version=app_settings.APP_VERSION,
        description="Authentication API with rolling access tokens and per-device refresh sessions",
        docs_url="/docs" if app_settings.DEBUG else None,
        redoc_url="/redoc" if app_settings.DEBUG else None,
        openapi_url="/openapi.json" if app_settings.DEBUG else None,
        lifespan=lifespan
    )

    app.state.settings = app_settings
    app.state.auth_config = auth_config
    app.state.session_factory = session_factory
    app.state.session_manager = sessions
    app.state.owns_engine = owns_engine
    app.state.rate_limiter = rate_limiter
    app.state.redis_client = None
    app.state.auth_service = AuthService(
        auth_config,
        issuer,
        sessions,
        lockout,
        hasher=hasher,
        mailer=mailer,
        clock=clock,
    )

    app.add_middleware(
        AuthenticationMiddleware,
        config=auth_config,
        issuer=issuer,
        sessions=sessions,
        routes=routes,
        clock=clock,
    )
    # Added last so it wraps authentication and answers preflight requests itself
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        expose_headers=[auth_config.access_token_header],
    )

    _register_exception_handlers(app, app_settings)

    from app.api import include_routers
    app.include_router(include_routers(routes, app_settings.API_V1_PREFIX), prefix=app_settings.API_V1_PREFIX)

    routes.mark_public("/", ("GET",))
    routes.mark_public("/health", ("GET",))
    if app_settings.DEBUG:
        for prefix in ("/docs", "/redoc", "/openapi.json"):
            routes.mark_public_prefix(prefix)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": app_settings.APP_NAME,
            "version": app_settings.APP_VERSION,
            "docs": "/docs" if app_settings.DEBUG else None,
            "endpoints": {
                "authentication": f"{app_settings.API_V1_PREFIX}/auth",
            }
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint"""
        database = "connected"
        try:
            async with request.app.state.session_factory() as db:
                await db.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            database = "disconnected"

        return {
            "status": "healthy" if database == "connected" else "degraded",
            "app": app_settings.APP_NAME,
            "version": app_settings.APP_VERSION,
            "environment": app_settings.ENVIRONMENT,
            "database": database,
            "rate_limiting": request.app.state.rate_limiter is not None,
        }

    return app


def _register_exception_handlers(app: FastAPI, app_settings: Settings) -> None:

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions, including the auth error taxonomy"""
        logger.warning(f"HTTP {exc.status_code}: {exc.detail} - {request.url.path}")
        content = {
            "error": exc.detail,
            "status_code": exc.status_code,
            "path": str(request.url.path)
        }
        code = getattr(exc, "code", None)
        if code:
            content["code"] = code
        return JSONResponse(
            status_code=exc.status_code,
            content=content,
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors"""
        logger.warning(f"Validation error on {request.url.path}: {len(exc.errors())} error(s)")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "Validation error",
                "code": "validation_error",
                "details": [
                    {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
                    for error in exc.errors()
                ],
                "status_code": 422,
                "path": str(request.url.path)
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions"""
        logger.error(f"Unexpected error: {exc} - {request.url.path}", exc_info=True)

        # Don't expose internal errors in production
        detail = "Internal server error" if app_settings.is_production else str(exc)

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": detail,
                "code": "internal_error",
                "status_code": 500,
                "path": str(request.url.path)
            }
        )


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
