#!/usr/bin/env python3
"""
CLI tool for event ingestion.

Usage:
    # Run one source now and wait for the job to finish
    python -m scripts.ingest run google-places
    python -m scripts.ingest run curated-venues --force --param days=3

    # Show recent runs
    python -m scripts.ingest history --limit 20

    # List registered sources / check their credentials
    python -m scripts.ingest sources
    python -m scripts.ingest health

    # Run the worker pool and recurring scheduler (continuous)
    python -m scripts.ingest serve
"""

import argparse
import asyncio
import json
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(__file__).rsplit("/", 2)[0])

from event_discovery.config import get_settings
from event_discovery.core.logging import configure_logging
from event_discovery.models.domain import JobState
from event_discovery.services.ingestion.runtime import IngestionRuntime, build_runtime


def parse_params(pairs: list[str]) -> dict:
    """Turn ``key=value`` pairs into job params, decoding JSON values."""
    params = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected key=value, got: {pair}")
        try:
            params[key] = json.loads(value)
        except json.JSONDecodeError:
            params[key] = value
    return params


def print_run(run) -> None:
    print(
        f"  {run.started_at:%Y-%m-%d %H:%M:%S}  {run.source_id:<16} {run.status:<8} "
        f"found={run.events_found} processed={run.events_processed} "
        f"approved={run.events_approved if run.events_approved is not None else '-'} "
        f"({run.execution_time_ms} ms)"
    )


async def open_runtime() -> IngestionRuntime:
    runtime = build_runtime(get_settings())
    await runtime.database.create_tables()
    return runtime


async def cmd_run(args):
    """Trigger a source and work the queue until its job settles."""
    try:
        params = parse_params(args.param)
    except ValueError as e:
        print(e)
        return 2

    runtime = await open_runtime()
    try:
        if args.source not in runtime.registry:
            print(f"Unknown source: {args.source}")
            print(f"Registered sources: {', '.join(runtime.registry.ids())}")
            return 1

        result = await runtime.scheduler.trigger_run(args.source, force=args.force, params=params)
        print(result.message)
        if not result.triggered:
            if result.last_run_at:
                print(f"Last successful run: {result.last_run_at:%Y-%m-%d %H:%M:%S} UTC")
            if result.job_id is None:
                return 0

        job = await runtime.pool.drain(result.job_id)

        print("\n" + "=" * 60)
        print(f"JOB {job.id}: {job.state} after {job.attempt} attempt(s)")
        print("=" * 60)
        if job.last_error:
            print(f"Last error: {job.last_error}")

        for run in await runtime.gateway.recent_runs(limit=job.attempt, source_id=args.source):
            print_run(run)

        return 0 if job.state != JobState.FAILED.value else 1
    finally:
        await runtime.close()


async def cmd_history(args):
    """Show recent fetch history."""
    runtime = await open_runtime()
    try:
        runs = await runtime.gateway.recent_runs(limit=args.limit, source_id=args.source)

        print("\n" + "=" * 60)
        print("FETCH HISTORY")
        print("=" * 60)
        if not runs:
            print("  No runs recorded yet")
        for run in runs:
            print_run(run)
            if args.verbose and run.error_details:
                print(f"    errors: {json.dumps(run.error_details)}")

        return 0
    finally:
        await runtime.close()


async def cmd_sources(args):
    """Show registered sources."""
    runtime = build_runtime(get_settings())
    try:
        print("\n" + "=" * 50)
        print("REGISTERED SOURCES")
        print("=" * 50)
        print(f"Total sources: {len(runtime.registry)}")
        print()

        for source in runtime.registry:
            info = source.describe()
            print(f"  {info.id} ({info.name})")
            print(f"    Type: {info.type.value}")
            print(f"    Configured: {'yes' if info.configured else 'no'}")
            print(f"    Auto-approve: {'yes' if info.auto_approve else 'no'}")
            print(f"    Rate limit: {info.rate_limit['max_requests']} requests / {info.rate_limit['window_seconds']}s")
            print()

        return 0
    finally:
        await runtime.close()


async def cmd_health(args):
    """Check credentials of all sources."""
    runtime = build_runtime(get_settings())
    try:
        print("Checking source health...")
        print("\n" + "=" * 40)
        print("SOURCE HEALTH")
        print("=" * 40)

        all_healthy = True
        for source in runtime.registry:
            is_healthy = await source.health_check()
            status = "OK" if is_healthy else "FAILED"
            print(f"  {source.id}: {status}")
            if not is_healthy:
                all_healthy = False

        return 0 if all_healthy else 1
    finally:
        await runtime.close()


async def cmd_serve(args):
    """Run the worker pool and the recurring scheduler."""
    settings = get_settings()
    runtime = build_runtime(settings)

    print(f"Starting {settings.worker_concurrency} worker(s), recurring schedule '{settings.recurring_cron}'")
    print("Press Ctrl+C to stop")

    await runtime.start()
    try:
        while runtime.pool.is_running:
            await asyncio.sleep(60)
    except asyncio.CancelledError:
        print("\nShutting down...")
    finally:
        await runtime.close()

    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Event Discovery - Ingestion CLI"
    )
    parser.add_argument(
        "--log-level",
        help="Override LOG_LEVEL for this invocation"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run one source now")
    run_parser.add_argument("source", help="Source id (e.g., google-places)")
    run_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Fetch even if the source already ran today"
    )
    run_parser.add_argument(
        "--param", "-p",
        action="append",
        default=[],
        help="Job param as key=value (repeatable)"
    )

    # History command
    history_parser = subparsers.add_parser("history", help="Show recent runs")
    history_parser.add_argument(
        "--limit", "-l",
        type=int,
        default=10,
        help="Number of runs to show (default: 10)"
    )
    history_parser.add_argument("--source", "-s", help="Only this source")
    history_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show error details"
    )

    subparsers.add_parser("sources", help="List registered sources")
    subparsers.add_parser("health", help="Check source credentials")
    subparsers.add_parser("serve", help="Run workers and recurring scheduler")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    settings = get_settings()
    configure_logging(args.log_level or settings.log_level, json_output=settings.log_json)

    commands = {
        "run": cmd_run,
        "history": cmd_history,
        "sources": cmd_sources,
        "health": cmd_health,
        "serve": cmd_serve,
    }
    try:
        return asyncio.run(commands[args.command](args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
