"""
Response hardening middleware.

Every HTTP response leaves with a fixed set of browser-facing headers.
Recommendations expire, so responses also default to ``no-store``
unless the endpoint chose its own caching policy (the SSE stream sets
``no-cache``).
"""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

SECURE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'self'",
}
DEFAULT_CACHE_CONTROL = "no-store"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Stamp ``SECURE_HEADERS`` and a default Cache-Control on responses."""

    def __init__(self, app: ASGIApp, cache_control: str = DEFAULT_CACHE_CONTROL) -> None:
        super().__init__(app)
        self._cache_control = cache_control

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        response.headers.update(SECURE_HEADERS)
        if "cache-control" not in response.headers:
            response.headers["Cache-Control"] = self._cache_control
        return response
