"""FastAPI exception handlers producing the standard error envelope."""

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
from structlog import get_logger

from bulkflow.core.config import settings
from bulkflow.core.errors import DomainError

logger = get_logger()

# Map domain error codes to HTTP status codes
ERROR_STATUS_MAP = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "VALIDATION_ERROR": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "INVALID_STATE": status.HTTP_409_CONFLICT,
    "SCHEDULING_FAILED": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "OPERATION_CANCELLED": status.HTTP_409_CONFLICT,
    "EXTERNAL_SERVICE_ERROR": status.HTTP_502_BAD_GATEWAY,
    "DATABASE_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "CONFIGURATION_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "DOMAIN_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """
    Translate a domain exception into an HTTP response.

    Domain errors are expected/handled errors, so log at WARNING level.
    Context is only echoed back when expose_error_details is enabled.
    """
    http_status = ERROR_STATUS_MAP.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.warning(
        "domain_error_handled",
        error_code=exc.code,
        http_status=http_status,
        message=exc.message,
        context=exc.context,
    )

    content: dict[str, Any] = {
        "error": {
            "code": exc.code,
            "message": exc.message,
            "request_id": _request_id(request),
        }
    }

    if settings.expose_error_details and exc.context:
        content["error"]["details"] = exc.context

    return JSONResponse(status_code=http_status, content=content)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """
    Handle HTTPException and return standardized error format.

    Error format:
    {
        "error": {
            "code": "HTTP_XXX",
            "message": "Error message",
            "request_id": "uuid"
        }
    }
    """
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": f"HTTP_{exc.status_code}",
                "message": str(exc.detail),
                "request_id": _request_id(request),
            }
        },
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle RequestValidationError, including pydantic's error details."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Invalid request data",
                "details": jsonable_errors(exc),
                "request_id": _request_id(request),
            }
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    # ctx may carry the raw exception object, which is not JSON serialisable
    return [
        {key: value for key, value in error.items() if key in ("type", "loc", "msg")}
        for error in exc.errors()
    ]


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions and return standardized error format.

    Logs the full exception with stack trace at ERROR level.
    """
    logger.exception("unhandled_exception", error_type=type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "request_id": _request_id(request),
            }
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Configure exception handlers for the application.

    Registers handlers for:
    - DomainError (domain-level exceptions)
    - HTTPException (FastAPI exceptions)
    - RequestValidationError (Pydantic validation)
    - Exception (catch-all for unexpected errors)
    """
    app.add_exception_handler(DomainError, domain_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, general_exception_handler)  # type: ignore[arg-type]
