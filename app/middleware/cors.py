from typing import List, Optional
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from config import settings
import logging

logger = logging.getLogger(__name__)

DEFAULT_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
DEFAULT_HEADERS = ["Authorization", "Content-Type", "X-Requested-With"]


class CORSMiddleware(BaseHTTPMiddleware):
    """Origin allow-list CORS with credentials, exposing the rolling-refresh header"""

    def __init__(
        self,
        app,
        allow_origins: Optional[List[str]] = None,
        allow_methods: Optional[List[str]] = None,
        allow_headers: Optional[List[str]] = None,
        expose_headers: Optional[List[str]] = None,
        allow_credentials: bool = True,
        max_age: int = 600
    ):
        super().__init__(app)
        self.allow_origins = allow_origins if allow_origins is not None else settings.CORS_ORIGINS
        self.allow_methods = allow_methods or DEFAULT_METHODS
        self.allow_headers = allow_headers or DEFAULT_HEADERS
        self.expose_headers = expose_headers or [settings.ACCESS_TOKEN_RESPONSE_HEADER]
        self.allow_credentials = allow_credentials
        self.max_age = max_age

        self.allowed_origins_set = set(self.allow_origins)

    async def dispatch(self, request: Request, call_next) -> Response:
        origin = request.headers.get("origin")
        is_allowed = self._is_origin_allowed(origin)

        # Preflight requests never reach the auth layer
        if request.method == "OPTIONS" and request.headers.get("access-control-request-method"):
            return self._handle_preflight(request, origin, is_allowed)

        response = await call_next(request)

        if is_allowed and origin:
            self._add_cors_headers(response, origin)

        return response

    def _is_origin_allowed(self, origin: Optional[str]) -> bool:
        if not origin:
            return False
        return "*" in self.allowed_origins_set or origin in self.allowed_origins_set

    def _handle_preflight(
        self,
        request: Request,
        origin: Optional[str],
        is_allowed: bool
    ) -> Response:
        if not is_allowed:
            logger.warning(f"CORS preflight denied for origin: {origin}")
            return Response(content="Origin not allowed", status_code=403)

        requested_method = request.headers.get("access-control-request-method")
        if requested_method not in self.allow_methods:
            logger.warning(f"CORS method not allowed: {requested_method}")
            return Response(content="Method not allowed", status_code=405)

        headers = {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Methods": ", ".join(self.allow_methods),
            "Access-Control-Allow-Headers": ", ".join(self.allow_headers),
            "Access-Control-Max-Age": str(self.max_age),
            "Vary": "Origin"
        }
        if self.allow_credentials:
            headers["Access-Control-Allow-Credentials"] = "true"

        return Response(status_code=200, headers=headers)

    def _add_cors_headers(self, response: Response, origin: str) -> None:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Vary"] = "Origin"

        if self.allow_credentials:
            response.headers["Access-Control-Allow-Credentials"] = "true"

        # Lets browser clients read the refreshed access token
        response.headers["Access-Control-Expose-Headers"] = ", ".join(self.expose_headers)
