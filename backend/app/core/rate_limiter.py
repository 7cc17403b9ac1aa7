"""
Rate limiting for the public SSO endpoints.
Uses SlowAPI keyed on the real client IP.
"""

import logging

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from app.core.config import settings

logger = logging.getLogger("agentradar.rate_limiter")


def get_real_client_ip(request: Request) -> str:
    """
    Get the real client IP, accounting for reverse proxies.
    Checks X-Forwarded-For first, then X-Real-IP, then the socket address.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First entry is the original client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


limiter = Limiter(
    key_func=get_real_client_ip,
    enabled=settings.RATE_LIMIT_ENABLED,
    strategy="fixed-window",
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return the standard error envelope with retry information."""
    logger.warning(
        f"Rate limit exceeded for {get_real_client_ip(request)} "
        f"on {request.method} {request.url.path}"
    )
    retry_after = getattr(exc, "retry_after", 60)

    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": "RATE_LIMITED",
            "message": f"Too many requests. Please retry after {retry_after} seconds.",
        },
        headers={"Retry-After": str(retry_after)},
    )
