"""Background execution of bulk operations."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from structlog import get_logger

from bulkflow.core.config import settings
from bulkflow.core.errors import OperationCancelledError, describe_error, service_boundary
from bulkflow.models.operations import OperationStatus, OperationType
from bulkflow.services import ledger
from bulkflow.services.handlers import CancellationToken, HandlerContext, get_handler
from bulkflow.types.database import OperationItemRecordTD, OperationRecordTD

logger = get_logger()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class OperationExecutor:
    """
    Runs operations as asyncio tasks.

    At most max_concurrent_operations operations process at once; the rest
    wait for a slot while staying pending. Within one operation,
    item_concurrency workers drain a FIFO queue of pending items, so with
    the default of 1 items run strictly in target order.
    """

    def __init__(
        self,
        max_concurrent_operations: int | None = None,
        item_concurrency: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.max_concurrent_operations = (
            max_concurrent_operations or settings.max_concurrent_operations
        )
        self.item_concurrency = item_concurrency or settings.executor_item_concurrency
        self.clock = clock
        self._admission: asyncio.Semaphore | None = None
        self._tasks: dict[int, asyncio.Task[None]] = {}

    @property
    def admission(self) -> asyncio.Semaphore:
        # Created lazily so it binds to the running event loop
        if self._admission is None:
            self._admission = asyncio.Semaphore(self.max_concurrent_operations)
        return self._admission

    @property
    def active_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    def is_running(self, operation_id: int) -> bool:
        task = self._tasks.get(operation_id)
        return task is not None and not task.done()

    def submit(self, operation_id: int) -> asyncio.Task[None]:
        """Schedule an operation for background execution and return its task."""
        existing = self._tasks.get(operation_id)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.create_task(
            self.run_operation(operation_id), name=f"bulk-operation-{operation_id}"
        )
        self._tasks[operation_id] = task
        task.add_done_callback(lambda done: self._forget(operation_id, done))
        logger.info("operation_submitted", operation_id=operation_id)
        return task

    def _forget(self, operation_id: int, task: asyncio.Task[None]) -> None:
        # A resubmission may already have replaced this task
        if self._tasks.get(operation_id) is task:
            del self._tasks[operation_id]

    async def run_operation(self, operation_id: int) -> None:
        """
        Execute one operation to a terminal status.

        Never raises: failures of the execution itself move the operation
        to failed with error_summary set.
        """
        async with self.admission:
            try:
                await self._execute(operation_id)
            except asyncio.CancelledError:
                # Shutdown; recovery picks the operation up again
                logger.warning("operation_interrupted", operation_id=operation_id)
                raise
            except Exception as e:
                logger.exception("operation_failed", operation_id=operation_id)
                await self._fail(operation_id, describe_error(e))

    async def _fail(self, operation_id: int, error: str) -> None:
        # Items still pending stay pending; skipped is reserved for cancellation
        now = self.clock()
        try:
            interrupted = await ledger.fail_interrupted_items(operation_id, now)
            if interrupted:
                await ledger.recount_operation(operation_id, now)
            await ledger.fail_operation(operation_id, error, now)
        except Exception:
            logger.exception("operation_fail_record_error", operation_id=operation_id)

    async def _execute(self, operation_id: int) -> None:
        operation = await ledger.get_operation(operation_id)
        if operation is None:
            logger.warning("operation_missing", operation_id=operation_id)
            return

        if not await ledger.mark_operation_processing(operation_id, self.clock()):
            skipped = 0
            if operation["status"] == OperationStatus.CANCELLED:
                skipped = await ledger.skip_pending_items(operation_id)
            logger.info(
                "operation_not_runnable",
                operation_id=operation_id,
                status=operation["status"],
                skipped_items=skipped,
            )
            return

        started = time.monotonic()
        context = self._build_context(operation)
        handler = get_handler(operation["operation_type"])
        items = await ledger.get_pending_items(operation_id)

        logger.info(
            "operation_started",
            operation_id=operation_id,
            operation_type=operation["operation_type"],
            pending_items=len(items),
        )

        queue: asyncio.Queue[OperationItemRecordTD] = asyncio.Queue()
        for item in items:
            queue.put_nowait(item)

        workers = [
            asyncio.create_task(self._worker(queue, handler, context))
            for _ in range(min(self.item_concurrency, max(len(items), 1)))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for worker in workers:
                worker.cancel()
            raise

        if context.token.cancelled:
            skipped = await ledger.skip_pending_items(operation_id)
            logger.info(
                "operation_cancel_observed", operation_id=operation_id, skipped_items=skipped
            )
            return

        processing_time = int((time.monotonic() - started) * 1000)
        final = await ledger.get_operation(operation_id)
        summary = self._summary(final or operation)

        if await ledger.complete_operation(operation_id, processing_time, summary, self.clock()):
            logger.info(
                "operation_completed",
                operation_id=operation_id,
                processing_time_ms=processing_time,
                **summary,
            )
        else:
            # Cancelled between the last item and completion
            await ledger.skip_pending_items(operation_id)
            logger.info("operation_completion_skipped", operation_id=operation_id)

    def _build_context(self, operation: OperationRecordTD) -> HandlerContext:
        operation_type = operation["operation_type"]
        params = ledger.parse_operation_params(operation_type, operation["operation_params"] or {})
        return HandlerContext(
            operation_id=operation["id"],
            owner_id=operation["owner_id"],
            operation_type=OperationType(operation_type),
            params=params,
            token=CancellationToken(operation["id"]),
            clock=self.clock,
        )

    @staticmethod
    def _summary(operation: Mapping[str, Any]) -> dict[str, int]:
        return {
            "success_count": operation["success_count"],
            "failed_count": operation["failed_count"],
            "total_processed": operation["processed_count"],
        }

    async def _worker(
        self,
        queue: asyncio.Queue[OperationItemRecordTD],
        handler: Any,
        context: HandlerContext,
    ) -> None:
        while True:
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            if await context.token.is_cancelled():
                return

            await self._process_item(item, handler, context)

    async def _process_item(
        self, item: OperationItemRecordTD, handler: Any, context: HandlerContext
    ) -> None:
        operation_id = context.operation_id
        if not await ledger.mark_item_processing(item["id"]):
            # Already skipped by a concurrent cancel
            return

        log = logger.bind(
            operation_id=operation_id, item_id=item["id"], target_id=item["target_id"]
        )
        try:
            result = await handler(item, context)
        except OperationCancelledError:
            await ledger.mark_item_skipped(item["id"])
            log.info("operation_item_skipped")
            return
        except Exception as e:
            error = describe_error(e)
            await ledger.record_item_failure(operation_id, item["id"], error, self.clock())
            log.warning("operation_item_failed", error=error, error_type=type(e).__name__)
            return

        await ledger.record_item_success(operation_id, item["id"], result, self.clock())
        log.debug("operation_item_completed")

    async def shutdown(self) -> None:
        """Cancel in-flight operation tasks and wait for them to unwind."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("executor_shutdown", interrupted=len(tasks))


executor = OperationExecutor()


@service_boundary
async def submit_operation(
    owner_id: int,
    operation_type: str,
    target_ids: list[int],
    target_type: str,
    params: Mapping[str, Any],
) -> OperationRecordTD:
    """
    Record a new operation and start it in the background.

    Returns as soon as the operation and its items are persisted.
    """
    operation = await ledger.create_operation(
        owner_id, operation_type, target_ids, target_type, params
    )
    executor.submit(operation["id"])
    return operation
