"""Request ID and caller context middleware for log correlation."""

from collections.abc import Awaitable, Callable
from typing import Any
from uuid import uuid4

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"
CALLER_HEADER = "X-User-Id"
MAX_REQUEST_ID_LENGTH = 128


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Attach a request ID to every request.

    - Reuses a caller-supplied X-Request-ID, otherwise generates a UUID
    - Adds request_id to request.state
    - Binds request_id (and user_id when sent) to the structlog context
    - Returns in X-Request-ID header for client use

    Operations submitted during the request run in tasks that copy this
    context, so their processing logs carry the submitting request's id.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Process request with a correlation ID."""
        incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
        if incoming and len(incoming) <= MAX_REQUEST_ID_LENGTH:
            request_id = incoming
        else:
            request_id = str(uuid4())
        request.state.request_id = request_id

        context: dict[str, Any] = {"request_id": request_id}
        caller = request.headers.get(CALLER_HEADER)
        if caller:
            context["user_id"] = caller

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**context)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            structlog.contextvars.clear_contextvars()
