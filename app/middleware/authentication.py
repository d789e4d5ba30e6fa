from typing import Optional, Tuple
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
import logging

from config import AuthConfig
from app.core.clock import Clock, system_clock
from app.core.cookies import set_refresh_cookie
from app.core.exceptions import AuthError, TokenInvalid
from app.core.jwt import TokenIssuer, AccessClaims, ACCESS
from app.core.route_access import RouteAccessTable
from app.services.device_info import DeviceInfo
from app.services.session_manager import SessionManager

logger = logging.getLogger(__name__)


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """
    Request-time access control with best-effort rolling refresh.

    Every non-public request must carry a valid access token; that check is
    pure and never touches the session store. When the token is close to
    expiry and the client also sent its refresh cookie, a fresh access token
    is minted (rotating the refresh session if it is itself close to expiry)
    and returned in a response header. Failures in that second step are
    logged and ignored; the request proceeds on the identity already
    established.
    """

    def __init__(
        self,
        app,
        config: AuthConfig,
        issuer: TokenIssuer,
        sessions: SessionManager,
        routes: RouteAccessTable,
        clock: Clock = system_clock,
    ):
        super().__init__(app)
        self.config = config
        self.issuer = issuer
        self.sessions = sessions
        self.routes = routes
        self.clock = clock

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method == "OPTIONS" or self.routes.is_public(request.method, request.url.path):
            return await call_next(request)

        try:
            claims = self.issuer.verify(self._extract_token(request), ACCESS)
        except AuthError as e:
            return self._reject(request, e)

        request.state.user_id = claims.subject
        request.state.claims = claims

        renewed = None
        seconds_remaining = (claims.expires_at - self.clock.now()).total_seconds()
        if seconds_remaining <= self.config.refresh_threshold_seconds:
            renewed = await self._rolling_refresh(request, claims)

        response = await call_next(request)

        if renewed is not None:
            access_token, refresh_token = renewed
            response.headers[self.config.access_token_header] = access_token
            if refresh_token:
                set_refresh_cookie(response, refresh_token, self.config)

        return response

    async def _rolling_refresh(
        self,
        request: Request,
        claims: AccessClaims
    ) -> Optional[Tuple[str, Optional[str]]]:
        """Advisory; returns (access token, rotated refresh token or None), or None"""
        cookie = request.cookies.get(self.config.refresh_cookie_name)
        if not cookie:
            return None

        try:
            session = await self.sessions.find_valid(cookie)
            if session is None or str(session.user_id) != claims.subject:
                return None

            refresh_token = None
            if session.seconds_remaining(self.clock.now()) < self.config.rotate_window_seconds:
                rotated = await self.sessions.rotate(session, DeviceInfo.from_request(request))
                if rotated is None:
                    return None
                refresh_token, session = rotated
                request.state.rotated_refresh_token = refresh_token
            else:
                await self.sessions.touch_last_used(session.session_id)

            identity = claims.identity()
            identity["sid"] = str(session.session_id)
            return self.issuer.sign_access(identity), refresh_token
        except Exception as e:
            logger.warning(f"Rolling refresh skipped for user {claims.subject}: {e!r}")
            return None

    @staticmethod
    def _extract_token(request: Request) -> Optional[str]:
        """Extract JWT token from Authorization header"""
        auth_header = request.headers.get("Authorization")
        if not auth_header:
            return None

        parts = auth_header.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise TokenInvalid("Invalid authorization header format")

        return parts[1]

    @staticmethod
    def _reject(request: Request, error: AuthError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={
                "error": error.detail,
                "code": error.code,
                "status_code": status.HTTP_401_UNAUTHORIZED,
                "path": str(request.url.path),
            },
            headers=error.headers,
        )
