"""Coarse per-IP rate limiting using SlowAPI.

This is a flood guard for the whole public email surface. The per-recipient
throttle in services.email_throttle sits behind it and never changes the
response shape.
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

PUBLIC_EMAIL_RATE_LIMIT = "30/minute"

# Create limiter with IP-based key function
limiter = Limiter(key_func=get_remote_address)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Custom handler for rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests. Please try again later."},
    )
