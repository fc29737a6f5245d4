"""CORS middleware configuration."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bulkflow.core.config import settings
from bulkflow.middleware.request_id import CALLER_HEADER, REQUEST_ID_HEADER


def setup_cors(app: FastAPI) -> None:
    """
    Configure CORS middleware for frontend access.

    Browsers may send the caller and correlation headers and read the
    request ID back, so failed calls can be quoted in bug reports.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.frontend_urls,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "PATCH"],
        allow_headers=["Content-Type", CALLER_HEADER, REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER],
    )
