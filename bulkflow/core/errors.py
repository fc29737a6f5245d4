"""
Error taxonomy for the ledger, executor and scheduler.

Every error a caller can act on is a DomainError subclass carrying a stable
code; middleware/errors.py maps codes to HTTP statuses. Item-level failures
inside an operation never escape as exceptions: the executor records
describe_error(exc) on the item and moves on.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import aiohttp
import asyncpg
from structlog import get_logger

logger = get_logger()

P = ParamSpec("P")
T = TypeVar("T")


class DomainError(Exception):
    """Base exception for all domain errors."""

    code: str = "DOMAIN_ERROR"

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        return self.message


# ============================================
# Caller errors
# ============================================


class NotFoundError(DomainError):
    """Operation, employer, conflict or other record is missing or owned by someone else."""

    code = "NOT_FOUND"


class ValidationError(DomainError):
    """Bad targets, parameters, rules or availability windows."""

    code = "VALIDATION_ERROR"


class InvalidStateError(DomainError):
    """Transition not allowed from the current status, e.g. cancelling a finished operation."""

    code = "INVALID_STATE"


# ============================================
# Processing errors
# ============================================


class OperationCancelledError(DomainError):
    """Raised inside a handler once its operation has been cancelled."""

    code = "OPERATION_CANCELLED"


class SchedulingError(DomainError):
    """No interview slot could be booked for a candidate."""

    code = "SCHEDULING_FAILED"


class ExternalServiceError(DomainError):
    """Notification or enrichment service rejected a call or was unreachable."""

    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        service: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        ctx = context or {}
        if service:
            ctx["service"] = service
        super().__init__(message, ctx)


class DatabaseError(DomainError):
    """Postgres rejected a statement for reasons the caller cannot fix."""

    code = "DATABASE_ERROR"


class ConfigurationError(DomainError):
    """Required setting (e.g. an outbound service URL) is missing."""

    code = "CONFIGURATION_ERROR"


def describe_error(exc: BaseException) -> str:
    """Message stored on failed items and runs; falls back to the exception type."""
    return str(exc) or type(exc).__name__


def service_boundary(func: Callable[P, T]) -> Callable[P, T]:
    """
    Convert native exceptions to domain exceptions at service entry points.

    Usage:
        @service_boundary
        async def cancel_operation(...):
            await db.execute(...)  # PostgresError -> DatabaseError

    A foreign key violation means the statement referenced a row that no
    longer exists (a conflict deleted while a resolution is added, a
    candidate removed mid-run) and surfaces as NotFoundError.
    """

    @wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await func(*args, **kwargs)
        except DomainError:
            raise
        except asyncpg.ForeignKeyViolationError as e:
            logger.warning(
                "referenced_record_missing",
                function=func.__name__,
                constraint=e.constraint_name,
            )
            raise NotFoundError(
                "Referenced record not found",
                context={"function": func.__name__, "constraint": e.constraint_name},
            ) from e
        except asyncpg.PostgresError as e:
            logger.error("database_error", function=func.__name__, error=str(e))
            raise DatabaseError(str(e), context={"function": func.__name__}) from e
        except aiohttp.ClientError as e:
            logger.error("external_api_error", function=func.__name__, error=str(e))
            raise ExternalServiceError(str(e), context={"function": func.__name__}) from e
        except Exception as e:
            logger.exception("unexpected_error", function=func.__name__)
            raise DomainError(
                describe_error(e), context={"function": func.__name__, "type": type(e).__name__}
            ) from e

    return wrapper  # type: ignore[return-value]
