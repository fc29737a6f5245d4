"""Scheduler service for background jobs."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from structlog import get_logger

from bulkflow.core.config import settings
from bulkflow.services import ledger
from bulkflow.services.executor import OperationExecutor, executor

logger = get_logger()

# Create scheduler instance
scheduler = AsyncIOScheduler()


async def recover_stalled_operations(
    runner: OperationExecutor | None = None, now: datetime | None = None
) -> int:
    """
    Resume operations left pending or processing by a previous process.

    Items interrupted mid-flight are failed, counters are rebuilt from the
    item rows, and the operation is resubmitted to process what is left.

    Returns:
        Number of operations resubmitted
    """
    runner = runner or executor
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(minutes=settings.stalled_operation_minutes)

    stalled = await ledger.find_stalled_operations(cutoff)
    resubmitted = 0
    for operation_id in stalled:
        if runner.is_running(operation_id):
            continue

        try:
            interrupted = await ledger.fail_interrupted_items(operation_id, now)
            await ledger.recount_operation(operation_id, now)
        except Exception:
            logger.exception("operation_recovery_failed", operation_id=operation_id)
            continue

        runner.submit(operation_id)
        resubmitted += 1
        logger.info(
            "operation_recovered", operation_id=operation_id, interrupted_items=interrupted
        )

    if stalled:
        logger.info("stalled_operations_checked", found=len(stalled), resubmitted=resubmitted)
    return resubmitted


def setup_scheduler() -> None:
    """
    Configure scheduler with all background jobs.

    Jobs:
    - recover_stalled_operations: every stalled_check_interval_minutes

    All jobs use coalesce=True and max_instances=1 to prevent overlaps.
    """
    scheduler.add_job(
        recover_stalled_operations,
        trigger="interval",
        minutes=settings.stalled_check_interval_minutes,
        id="recover_stalled_operations",
        replace_existing=True,
        coalesce=True,  # Skip if previous run still executing
        max_instances=1,  # Only one instance at a time
        next_run_time=datetime.now(UTC),
    )

    logger.info("scheduler_configured", jobs=1)


def start_scheduler() -> None:
    """Start the scheduler."""
    scheduler.start()
    logger.info("scheduler_started")


def shutdown_scheduler() -> None:
    """Shutdown the scheduler gracefully."""
    scheduler.shutdown(wait=True)
    logger.info("scheduler_shutdown")
