"""Shared route dependencies."""

from typing import Annotated

from fastapi import Header, HTTPException, status

from bulkflow.middleware.request_id import CALLER_HEADER


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def get_current_owner(
    x_user_id: Annotated[str | None, Header(alias=CALLER_HEADER)] = None,
) -> int:
    """
    Resolve the calling user from the X-User-Id header.

    Authentication happens upstream; this only requires a positive integer id.
    Every operation, employer and conflict lookup is scoped to this owner.

    Raises:
        HTTPException: 401 if the header is missing or not a positive integer
    """
    if not x_user_id:
        raise _unauthorized(f"Missing {CALLER_HEADER}")
    try:
        owner_id = int(x_user_id)
    except ValueError as e:
        raise _unauthorized(f"Invalid {CALLER_HEADER}") from e
    if owner_id < 1:
        raise _unauthorized(f"Invalid {CALLER_HEADER}")
    return owner_id
