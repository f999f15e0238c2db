"""
Command-line entry point for running a batch without the HTTP API.

    python -m src.flowbatch.runner.main run --flow FLOW --workspace WS --csv tasks.csv
    python -m src.flowbatch.runner.main flows --workspace WS
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

import inject

from src.flowbatch.application.services import BatchService
from src.flowbatch.domain.events.batch_event import BatchEvent, EventType
from src.flowbatch.domain.exceptions import BatchValidationError, FlowApiError
from src.flowbatch.domain.models import BatchConfiguration, BatchSummary, TaskState
from src.flowbatch.domain.repositories import FlowInvocationRepository
from src.flowbatch.infrastructure.events.router import EventRouter
from src.flowbatch.infrastructure.filesystem.task_store import JsonTaskListStore
from src.flowbatch.infrastructure.http.client import FlowApiClient
from src.setup.app_config import configure_di
from src.setup.logging_config import configure_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_TASKS_FAILED = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowbatch", description="Run FlowHunt flows over a list of inputs"
    )
    parser.add_argument("--log-level", type=str, default=None, help="Overrides LOG_LEVEL")
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Execute a batch of tasks")
    run.add_argument("--flow", required=True, help="Flow id to invoke")
    run.add_argument("--workspace", required=True, help="Workspace id that owns the flow")
    run.add_argument("--csv", type=str, default=None, help="CSV file to import tasks from")
    run.add_argument(
        "--state-file",
        type=str,
        default=None,
        help="JSON snapshot of the task list; loaded on start and saved as tasks finish",
    )
    run.add_argument("--parallelism", type=int, default=None, help="Tasks per slice (1-50)")
    run.add_argument(
        "--normal",
        action="store_true",
        help="Use the plain invoke endpoint instead of invoke_singleton",
    )
    run.add_argument("--no-output", action="store_true", help="Do not write result files")
    run.add_argument("--output-dir", type=str, default=None, help="Directory for result files")
    run.add_argument(
        "--merge-columns",
        action="store_true",
        help="Send every CSV column as the input when the file has a header",
    )
    run.add_argument(
        "--retry-failed",
        action="store_true",
        help="Reset failed tasks from the snapshot so they run again",
    )

    flows = commands.add_parser("flows", help="List available flows")
    flows.add_argument("--workspace", required=True, help="Workspace id")
    flows.add_argument("--public", action="store_true", help="List public flows")
    return parser


def _run_configuration(args: argparse.Namespace) -> BatchConfiguration:
    overrides: dict[str, object] = {
        "singleton_mode": not args.normal,
        "write_output_to_file": not args.no_output,
    }
    if args.parallelism is not None:
        overrides["parallelism"] = args.parallelism
    if args.output_dir:
        overrides["output_directory"] = args.output_dir
    base = inject.instance(BatchConfiguration)
    return BatchConfiguration.model_validate({**base.model_dump(), **overrides})


def print_summary(summary: BatchSummary) -> None:
    state = "stopped" if summary.stopped else "completed"
    print(f"Batch {state}: {summary.total} task(s)")
    print(f"  done:    {summary.done}")
    print(f"  failed:  {summary.failed}")
    print(f"  waiting: {summary.waiting}")


async def run_command(args: argparse.Namespace, service: BatchService | None = None) -> int:
    service = service or BatchService(config=_run_configuration(args))
    store = JsonTaskListStore(args.state_file) if args.state_file else None

    if store is not None and store.path.exists():
        service.add_tasks(store.load())
        logger.info("Resumed task list", extra={"path": str(store.path), "tasks": len(service.tasks)})
    if args.csv:
        result = await service.import_csv_file(args.csv, merge_columns=args.merge_columns)
        if result.skipped:
            print(f"Skipped {result.skipped} row(s) without a filename", file=sys.stderr)
    if args.retry_failed:
        for task in service.tasks:
            if task.status == TaskState.FAILED:
                task.reset_for_retry()

    router = inject.instance(EventRouter)

    async def _save_snapshot(event: BatchEvent) -> None:
        if store is not None:
            await asyncio.to_thread(store.save, service.tasks)

    router.subscribe(_save_snapshot, EventType.TASK_FINALIZED)
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, service.stop)
    try:
        summary = await service.run_batch(args.flow, args.workspace)
    except BatchValidationError as exc:
        print(f"Cannot start batch: {exc}", file=sys.stderr)
        return EXIT_USAGE
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        router.unsubscribe(_save_snapshot, EventType.TASK_FINALIZED)

    if store is not None:
        await asyncio.to_thread(store.save, service.tasks)
    if service.config.write_output_to_file:
        report = await service.write_outputs()
        print(f"Wrote {report.written} file(s) to {service.config.output_directory}")
        for task_id, error in report.errors.items():
            print(f"  {task_id}: {error}", file=sys.stderr)

    print_summary(summary)
    return EXIT_TASKS_FAILED if summary.failed else EXIT_OK


async def flows_command(args: argparse.Namespace) -> int:
    flows = inject.instance(FlowInvocationRepository)
    try:
        items = await flows.list_flows(args.workspace, public=args.public)
    except FlowApiError as exc:
        print(f"Failed to list flows: {exc}", file=sys.stderr)
        return EXIT_TASKS_FAILED
    for flow in items:
        print(f"{flow.flow_id}\t{flow.name or ''}")
    return EXIT_OK


async def _main(args: argparse.Namespace) -> int:
    try:
        if args.command == "flows":
            return await flows_command(args)
        return await run_command(args)
    finally:
        await inject.instance(FlowApiClient).close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    configure_di()
    return asyncio.run(_main(args))


if __name__ == "__main__":
    sys.exit(main())
