"""HTTP middleware for cross-cutting concerns."""

from bulkflow.middleware.cors import setup_cors
from bulkflow.middleware.errors import setup_exception_handlers
from bulkflow.middleware.logging import LoggingMiddleware
from bulkflow.middleware.rate_limit import get_limiter, limiter, setup_rate_limiting
from bulkflow.middleware.request_id import RequestIDMiddleware

__all__ = [
    "RequestIDMiddleware",
    "LoggingMiddleware",
    "setup_exception_handlers",
    "setup_cors",
    "setup_rate_limiting",
    "get_limiter",
    "limiter",
]
