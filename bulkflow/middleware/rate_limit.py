"""Rate limiting middleware."""

from fastapi import FastAPI
from slowapi import (
    Limiter,
    _rate_limit_exceeded_handler,  # type: ignore[reportPrivateUsage]
)
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request

from bulkflow.middleware.request_id import CALLER_HEADER


def caller_key(request: Request) -> str:
    """Limit per X-User-Id caller, falling back to client IP."""
    user_id = request.headers.get(CALLER_HEADER)
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


def get_limiter() -> Limiter:
    """Create rate limiter instance keyed by caller."""
    return Limiter(key_func=caller_key)


limiter = get_limiter()


def setup_rate_limiting(app: FastAPI) -> Limiter:
    """
    Configure rate limiting for the application.

    Returns:
        Limiter instance for use in route decorators
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[reportUnknownMemberType]  # FastAPI handler
    return limiter
