"""Pytest configuration for tests."""

import os
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from asyncpg import create_pool
from dotenv import load_dotenv

# Load .env.test file if it exists
env_test_path = Path(__file__).parent.parent / ".env.test"
if env_test_path.exists():
    load_dotenv(env_test_path)

# Set test environment variables before any imports (only if not already set)
os.environ.setdefault("DATABASE_URL", "postgresql://localhost:5432/bulkflow_test")
os.environ.setdefault("LOG_LEVEL", "INFO")
os.environ.setdefault("LOG_JSON", "false")

SCHEMA_PATH = Path(__file__).parent.parent / "database" / "schema.sql"

TABLES = (
    "conflict_resolutions",
    "interview_conflicts",
    "interviews",
    "scheduling_runs",
    "candidate_availability",
    "bulk_operation_items",
    "bulk_operations",
    "applications",
    "candidates",
    "jobs",
    "employers",
)


@pytest_asyncio.fixture
async def db_pool():
    """
    Create a test database connection pool and initialize the app's DB.

    Skips the test when PostgreSQL is not reachable.
    """
    from bulkflow.core import database as db_module
    from bulkflow.core.config import settings

    try:
        pool = await create_pool(settings.database_url, min_size=1, max_size=5, timeout=5)
    except Exception as e:
        pytest.skip(f"PostgreSQL unavailable: {e}")

    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_PATH.read_text())

    # Initialize the app's database singleton so service functions work
    db_module.db.pool = pool

    yield pool

    # Clean up
    db_module.db.pool = None
    await pool.close()


@pytest_asyncio.fixture
async def clean_db(db_pool):
    """Clean database before each test."""
    async with db_pool.acquire() as conn:
        await conn.execute(f"TRUNCATE {', '.join(TABLES)} RESTART IDENTITY CASCADE")

    yield db_pool


@pytest_asyncio.fixture
async def sample_employer(clean_db) -> dict[str, Any]:
    """Employer owned by user 1 with one job."""
    async with clean_db.acquire() as conn:
        employer_id = await conn.fetchval(
            "INSERT INTO employers (user_id, company_name) VALUES (1, 'Acme') RETURNING id"
        )
        job_id = await conn.fetchval(
            "INSERT INTO jobs (employer_id, title) VALUES ($1, 'Backend Engineer') RETURNING id",
            employer_id,
        )
    return {"employer_id": employer_id, "job_id": job_id, "owner_id": 1}


@pytest_asyncio.fixture
async def make_candidate(clean_db, sample_employer):
    """Factory: candidate with an application to the sample job and optional windows."""

    async def _make(name: str = "Candidate", windows: list[tuple[str, str, str]] | None = None):
        async with clean_db.acquire() as conn:
            candidate_id = await conn.fetchval(
                "INSERT INTO candidates (full_name) VALUES ($1) RETURNING id", name
            )
            application_id = await conn.fetchval(
                """
                INSERT INTO applications (candidate_id, job_id, status)
                VALUES ($1, $2, 'applied') RETURNING id
                """,
                candidate_id,
                sample_employer["job_id"],
            )
            for day, start, end in windows or []:
                await conn.execute(
                    """
                    INSERT INTO candidate_availability
                    (candidate_id, day_of_week, start_time, end_time, timezone)
                    VALUES ($1, $2, $3, $4, 'UTC')
                    """,
                    candidate_id,
                    day,
                    start,
                    end,
                )
        return {"candidate_id": candidate_id, "application_id": application_id}

    return _make


@pytest_asyncio.fixture
async def http_client():
    """HTTP client for the FastAPI app with a fresh rate-limit window."""
    from httpx import ASGITransport, AsyncClient

    from bulkflow.main import app
    from bulkflow.middleware.rate_limit import limiter

    limiter.reset()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests (fast)")
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (need PostgreSQL)"
    )
    config.addinivalue_line("markers", "e2e: marks HTTP end-to-end tests (need PostgreSQL)")
