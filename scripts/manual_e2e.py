#!/usr/bin/env python3
"""Manual E2E testing script for development.

Drives a running server through its HTTP API using rows that already exist
in the database (candidates, an employer owned by --user-id, a job).

Usage:
    python scripts/manual_e2e.py                               # Interactive menu (localhost:8000)
    python scripts/manual_e2e.py --scenario operation --candidate-ids 1 2 3
    python scripts/manual_e2e.py --scenario schedule --employer-id 1 --candidate-ids 1 2
    python scripts/manual_e2e.py --url https://staging.onrender.com --scenario health
    TEST_BASE_URL=https://staging.onrender.com python scripts/manual_e2e.py
"""

import argparse
import asyncio
import os
from dataclasses import dataclass, field

import httpx

DEFAULT_BASE_URL = "http://localhost:8000"
TERMINAL_STATUSES = {"completed", "failed", "cancelled"}


@dataclass
class Scenario:
    base_url: str
    user_id: int = 1
    candidate_ids: list[int] = field(default_factory=list)
    employer_id: int | None = None
    job_id: int | None = None

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=30.0,
            headers={"X-User-Id": str(self.user_id)},
        )


def print_header(text: str):
    """Print section header."""
    print(f"\n{'=' * 60}")
    print(f"  {text}")
    print(f"{'=' * 60}\n")


def print_step(number: int, text: str):
    """Print step description."""
    print(f"\n[Step {number}] {text}")


def print_success(text: str):
    print(f"✓ {text}")


def print_error(text: str):
    print(f"✗ {text}")


async def check_health(client: httpx.AsyncClient) -> bool:
    """Check application health."""
    try:
        response = await client.get("/health")
    except httpx.HTTPError as e:
        print_error(f"Health check error: {e}")
        return False

    if response.status_code != 200:
        print_error(f"Health check failed: {response.status_code}")
        return False

    data = response.json()
    print_success(f"Health check passed: {data.get('status')}")
    print(f"  Database: {data.get('database')}")
    print(f"  Scheduler: {data.get('scheduler', 'unknown')}")
    print(f"  Operations: {data.get('operations')}")
    return True


async def wait_for_operation(
    client: httpx.AsyncClient, operation_id: int, timeout: float = 60.0
) -> dict:
    """Poll an operation until it reaches a terminal status."""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        response = await client.get(f"/operations/{operation_id}")
        response.raise_for_status()
        details = response.json()
        operation = details["operation"]
        print(
            f"  status={operation['status']} "
            f"processed={operation['processed_count']}/{operation['target_count']}"
        )
        if operation["status"] in TERMINAL_STATUSES:
            return details
        if asyncio.get_running_loop().time() > deadline:
            raise TimeoutError(f"Operation {operation_id} still {operation['status']}")
        await asyncio.sleep(1)


async def scenario_status_update(scenario: Scenario):
    """Submit a status update and follow it to completion."""
    print_header("Scenario: Bulk status update")

    async with scenario.client() as client:
        print_step(1, "Check application health")
        if not await check_health(client):
            return

        print_step(2, f"Submit status_update for candidates {scenario.candidate_ids}")
        response = await client.post(
            "/operations",
            json={
                "operation_type": "status_update",
                "target_ids": scenario.candidate_ids,
                "target_type": "candidate",
                "operation_params": {"new_status": "reviewed"},
            },
        )
        if response.status_code != 202:
            print_error(f"Submission rejected: {response.status_code} {response.text}")
            return
        operation_id = response.json()["operation_id"]
        print_success(f"Operation {operation_id} accepted")

        print_step(3, "Wait for the operation to finish")
        details = await wait_for_operation(client, operation_id)
        for item in details["items"]:
            marker = print_success if item["status"] == "completed" else print_error
            marker(f"target {item['target_id']}: {item['status']} {item['error_message'] or ''}")

        print_step(4, "Operation statistics (last 30 days)")
        stats = (await client.get("/operations/stats")).json()
        print(f"  {stats}")


async def scenario_cancel(scenario: Scenario):
    """Submit an export and cancel it straight away."""
    print_header("Scenario: Cancel operation")

    async with scenario.client() as client:
        print_step(1, "Submit export_data")
        response = await client.post(
            "/operations",
            json={
                "operation_type": "export_data",
                "target_ids": scenario.candidate_ids,
                "target_type": "candidate",
                "operation_params": {"format": "json"},
            },
        )
        response.raise_for_status()
        operation_id = response.json()["operation_id"]

        print_step(2, f"Cancel operation {operation_id}")
        response = await client.post(f"/operations/{operation_id}/cancel")
        if response.status_code == 409:
            print_error("Operation finished before it could be cancelled")
        else:
            response.raise_for_status()
            print_success("Cancel accepted")

        print_step(3, "Final state")
        await wait_for_operation(client, operation_id)


async def scenario_schedule(scenario: Scenario):
    """Run the bulk scheduler and print conflicts with suggested alternatives."""
    print_header("Scenario: Bulk scheduling run")
    if scenario.employer_id is None:
        print_error("--employer-id is required for this scenario")
        return

    async with scenario.client() as client:
        print_step(1, "Create scheduling run")
        response = await client.post(
            "/scheduling/runs",
            json={
                "employer_id": scenario.employer_id,
                "job_id": scenario.job_id,
                "name": "Manual E2E run",
                "candidate_ids": scenario.candidate_ids,
                "rules": {"duration": 45, "buffer_minutes": 15},
            },
        )
        if response.status_code != 201:
            print_error(f"Run failed: {response.status_code} {response.text}")
            return

        data = response.json()
        run = data["run"]
        print_success(
            f"Run {run['id']}: scheduled={run['scheduled_count']} "
            f"conflicts={run['conflict_count']} failed={run['failed_count']}"
        )
        for interview in data["result"]["scheduled"]:
            print(f"  candidate {interview['candidate_id']} at {interview['scheduled_at']}")
        for failure in data["result"]["failed"]:
            print_error(f"candidate {failure['candidate_id']}: {failure['reason']}")

        print_step(2, "Suggested resolutions")
        for conflict in data["result"]["conflicts"]:
            response = await client.get(f"/scheduling/conflicts/{conflict['id']}/resolutions")
            response.raise_for_status()
            for resolution in response.json()["resolutions"]:
                print(
                    f"  conflict {conflict['id']} #{resolution['priority']}: "
                    f"{resolution['suggested_time']}"
                )


async def check_health_only(scenario: Scenario):
    """Just check health endpoint."""
    async with scenario.client() as client:
        await check_health(client)


SCENARIOS = {
    "operation": ("Bulk status update", scenario_status_update),
    "cancel": ("Cancel operation", scenario_cancel),
    "schedule": ("Bulk scheduling run", scenario_schedule),
    "health": ("Health check only", check_health_only),
}


async def interactive_menu(scenario: Scenario):
    """Show interactive menu of scenarios."""
    print_header(f"E2E Testing - {scenario.base_url}")
    choices = dict(enumerate(SCENARIOS.values(), start=1))

    while True:
        print("\nAvailable scenarios:")
        for key, (name, _) in choices.items():
            print(f"  {key}. {name}")
        print("  q. Quit")

        choice = input("\nSelect scenario (or 'q' to quit): ").strip()

        if choice.lower() == "q":
            print("Goodbye!")
            break

        if not choice.isdigit() or int(choice) not in choices:
            print_error("Invalid choice")
            continue

        _, func = choices[int(choice)]
        try:
            await func(scenario)
        except KeyboardInterrupt:
            print("\n\nInterrupted by user")
            break
        except (httpx.HTTPError, TimeoutError) as e:
            print_error(f"Scenario failed: {e}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Manual E2E testing for Bulkflow")
    parser.add_argument("--scenario", choices=list(SCENARIOS), help="Run specific scenario")
    parser.add_argument(
        "--url",
        help=f"Base URL for testing (default: $TEST_BASE_URL or {DEFAULT_BASE_URL})",
    )
    parser.add_argument("--user-id", type=int, default=1, help="Caller sent as X-User-Id")
    parser.add_argument("--candidate-ids", type=int, nargs="+", default=[1, 2, 3])
    parser.add_argument("--employer-id", type=int)
    parser.add_argument("--job-id", type=int)

    args = parser.parse_args()

    # Determine base URL: CLI arg > env var > default
    scenario = Scenario(
        base_url=args.url or os.getenv("TEST_BASE_URL") or DEFAULT_BASE_URL,
        user_id=args.user_id,
        candidate_ids=args.candidate_ids,
        employer_id=args.employer_id,
        job_id=args.job_id,
    )

    if args.scenario:
        asyncio.run(SCENARIOS[args.scenario][1](scenario))
    else:
        asyncio.run(interactive_menu(scenario))


if __name__ == "__main__":
    main()
