"""
Per-client request limits.

slowapi keys requests on the remote address. Bulk evaluation fans out
to every signal source for every symbol, so its route carries the
heavy limit from ``Settings``; the default limit is applied wherever a
route is decorated with ``limiter.limit(DEFAULT_RATE_LIMIT)``.
"""

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from app.core.config import settings

DEFAULT_RATE_LIMIT = settings.rate_limit_default
HEAVY_RATE_LIMIT = settings.rate_limit_heavy

limiter = Limiter(key_func=get_remote_address, default_limits=[DEFAULT_RATE_LIMIT])


async def rate_limit_exceeded_handler(
    _request: Request, exc: RateLimitExceeded
) -> JSONResponse:
    """Answer 429 in the same ``{"error", "detail"}`` shape as domain errors."""
    return JSONResponse(
        status_code=429,
        content={"error": "Rate limit exceeded", "detail": str(exc.detail)},
    )
