"""Integration tests for bulk operations against PostgreSQL."""

from datetime import timedelta

import pytest

from bulkflow.core.errors import InvalidStateError, NotFoundError
from bulkflow.services import ledger
from bulkflow.services.executor import OperationExecutor
from bulkflow.services.scheduler import recover_stalled_operations
from tests.fixtures.factories import NOW

pytestmark = pytest.mark.integration


def runner() -> OperationExecutor:
    return OperationExecutor(max_concurrent_operations=2, item_concurrency=1, clock=lambda: NOW)


class TestOperationLifecycle:
    @pytest.mark.asyncio
    async def test_status_update_runs_to_completion(self, clean_db, make_candidate):
        """Every target is attempted; a missing candidate fails without stopping the rest."""
        first = await make_candidate("Ada")
        second = await make_candidate("Grace")
        missing_id = second["candidate_id"] + 100

        operation = await ledger.create_operation(
            1,
            "status_update",
            [first["candidate_id"], missing_id, second["candidate_id"]],
            "candidate",
            {"new_status": "archived"},
        )
        assert operation["status"] == "pending"
        assert operation["target_count"] == 3

        await runner().run_operation(operation["id"])

        final = await ledger.get_operation(operation["id"])
        assert final["status"] == "completed"
        assert final["processed_count"] == 3
        assert final["success_count"] == 2
        assert final["failed_count"] == 1
        assert final["completed_at"] is not None
        assert final["results_summary"] == {
            "success_count": 2,
            "failed_count": 1,
            "total_processed": 3,
        }

        items = await ledger.get_operation_items(operation["id"])
        assert [item["target_id"] for item in items] == [
            first["candidate_id"],
            missing_id,
            second["candidate_id"],
        ]
        assert [item["status"] for item in items] == ["completed", "failed", "completed"]
        assert "not found" in items[1]["error_message"]
        assert items[0]["result"] == {"new_status": "archived"}

        async with clean_db.acquire() as conn:
            statuses = await conn.fetch("SELECT profile_status FROM candidates ORDER BY id")
        assert [row["profile_status"] for row in statuses] == ["archived", "archived"]

    @pytest.mark.asyncio
    async def test_export_data_csv(self, clean_db, make_candidate):
        candidate = await make_candidate("Ada")

        operation = await ledger.create_operation(
            1,
            "export_data",
            [candidate["candidate_id"]],
            "candidate",
            {"format": "csv", "fields": ["id", "full_name"]},
        )
        await runner().run_operation(operation["id"])

        items = await ledger.get_operation_items(operation["id"])
        assert items[0]["status"] == "completed"
        assert items[0]["result"]["data"].splitlines() == [
            "id,full_name",
            f"{candidate['candidate_id']},Ada",
        ]

    @pytest.mark.asyncio
    async def test_cancel_pending_operation(self, clean_db, make_candidate):
        """Cancelling before the executor starts skips every item."""
        candidate = await make_candidate("Ada")
        operation = await ledger.create_operation(
            1, "status_update", [candidate["candidate_id"]], "candidate", {"new_status": "hired"}
        )

        cancelled = await ledger.cancel_operation(operation["id"], 1, now=NOW)
        assert cancelled["status"] == "cancelled"
        assert cancelled["cancelled_by"] == 1

        await runner().run_operation(operation["id"])

        final = await ledger.get_operation(operation["id"])
        assert final["status"] == "cancelled"
        assert final["processed_count"] == 0
        items = await ledger.get_operation_items(operation["id"])
        assert [item["status"] for item in items] == ["skipped"]

        async with clean_db.acquire() as conn:
            status = await conn.fetchval(
                "SELECT profile_status FROM candidates WHERE id = $1", candidate["candidate_id"]
            )
        assert status == "active"

    @pytest.mark.asyncio
    async def test_cancel_completed_operation_rejected(self, clean_db, make_candidate):
        candidate = await make_candidate("Ada")
        operation = await ledger.create_operation(
            1, "status_update", [candidate["candidate_id"]], "candidate", {"new_status": "hired"}
        )
        await runner().run_operation(operation["id"])

        with pytest.raises(InvalidStateError):
            await ledger.cancel_operation(operation["id"], 1)

    @pytest.mark.asyncio
    async def test_operations_are_owner_scoped(self, clean_db, make_candidate):
        candidate = await make_candidate("Ada")
        operation = await ledger.create_operation(
            1, "status_update", [candidate["candidate_id"]], "candidate", {"new_status": "hired"}
        )

        with pytest.raises(NotFoundError):
            await ledger.get_operation_details(operation["id"], 2)
        with pytest.raises(NotFoundError):
            await ledger.cancel_operation(operation["id"], 2)

        assert await ledger.list_operations(2) == []
        assert [op["id"] for op in await ledger.list_operations(1)] == [operation["id"]]


class TestRecovery:
    @pytest.mark.asyncio
    async def test_stalled_operation_resumes_remaining_items(self, clean_db, make_candidate):
        """An interrupted item is failed and the rest of the operation is processed."""
        first = await make_candidate("Ada")
        second = await make_candidate("Grace")
        operation = await ledger.create_operation(
            1,
            "status_update",
            [first["candidate_id"], second["candidate_id"]],
            "candidate",
            {"new_status": "archived"},
        )

        # Simulate a process that died while working on the first item
        async with clean_db.acquire() as conn:
            await conn.execute(
                """
                UPDATE bulk_operations
                SET status = 'processing', started_at = $2, updated_at = $2
                WHERE id = $1
                """,
                operation["id"],
                NOW - timedelta(hours=2),
            )
            await conn.execute(
                """
                UPDATE bulk_operation_items SET status = 'processing'
                WHERE operation_id = $1 AND target_id = $2
                """,
                operation["id"],
                first["candidate_id"],
            )

        executor = runner()
        resubmitted = await recover_stalled_operations(executor, now=NOW)
        assert resubmitted == 1

        assert executor.is_running(operation["id"])
        await executor._tasks[operation["id"]]

        final = await ledger.get_operation(operation["id"])
        assert final["status"] == "completed"
        assert final["success_count"] == 1
        assert final["failed_count"] == 1
        assert final["processed_count"] == 2

        items = await ledger.get_operation_items(operation["id"])
        assert items[0]["error_message"] == "Interrupted before completion"
        assert items[1]["status"] == "completed"


class TestStatistics:
    @pytest.mark.asyncio
    async def test_stats_over_finished_operations(self, clean_db, make_candidate):
        candidate = await make_candidate("Ada")
        done = await ledger.create_operation(
            1,
            "status_update",
            [candidate["candidate_id"], candidate["candidate_id"] + 50],
            "candidate",
            {"new_status": "archived"},
        )
        await runner().run_operation(done["id"])

        dropped = await ledger.create_operation(
            1, "status_update", [candidate["candidate_id"]], "candidate", {"new_status": "hired"}
        )
        await ledger.cancel_operation(dropped["id"], 1)

        async with clean_db.acquire() as conn:
            created = await conn.fetch("SELECT created_at FROM bulk_operations ORDER BY id")
        start = created[0]["created_at"] - timedelta(minutes=1)
        end = created[-1]["created_at"] + timedelta(minutes=1)

        stats = await ledger.get_operation_stats(1, start, end)

        assert stats["total_operations"] == 2
        assert stats["completed_operations"] == 1
        assert stats["cancelled_operations"] == 1
        assert stats["success_rate"] == 50
        assert stats["total_items_processed"] == 2
        assert stats["total_items_success"] == 1
        assert stats["item_success_rate"] == 50

        assert (await ledger.get_operation_stats(2, start, end))["total_operations"] == 0
