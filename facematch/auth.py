"""API key authentication middleware."""
import hmac
import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from facematch.errors import AuthError

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Reject requests missing a valid ``X-API-Key`` header.

    Every route is protected, unknown ones included. With no key
    configured every request is rejected.
    """

    def __init__(self, app: ASGIApp, api_key: str = "") -> None:
        super().__init__(app)
        self._api_key = api_key or ""
        if not self._api_key:
            logger.warning("API_KEY is not set, all requests will be rejected")

    async def dispatch(self, request: Request, call_next) -> Response:
        # Allow CORS preflight through without auth
        if request.method == "OPTIONS":
            return await call_next(request)

        key = request.headers.get(API_KEY_HEADER, "")
        if not self._check_key(key):
            error = AuthError("Invalid API key")
            logger.warning(f"Rejected {request.method} {request.url.path}: invalid API key")
            return JSONResponse(
                status_code=error.status_code,
                content={"error": error.error, "message": error.message}
            )

        return await call_next(request)

    def _check_key(self, candidate: str) -> bool:
        """Constant-time comparison against the configured key."""
        if not candidate or not self._api_key:
            return False
        return hmac.compare_digest(candidate.encode(), self._api_key.encode())
