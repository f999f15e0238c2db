from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import inject

from src.flowbatch.application.broadcaster import BatchEventBroadcaster
from src.flowbatch.application.extraction import (
    response_answer,
    response_credits,
    serialize_response,
)
from src.flowbatch.domain.events.batch_event import BatchEvent
from src.flowbatch.domain.exceptions import (
    BatchAlreadyRunningError,
    BatchValidationError,
    FlowApiError,
)
from src.flowbatch.domain.models.batch_config import BatchConfiguration
from src.flowbatch.domain.models.batch_summary import BatchSummary
from src.flowbatch.domain.models.batch_task import BatchTask
from src.flowbatch.domain.models.flow_response import FlowTaskResponse
from src.flowbatch.domain.models.task_state import (
    FAILED_REMOTE_STATUSES,
    RemoteStatus,
    TaskState,
)
from src.flowbatch.domain.repositories import FlowInvocationRepository

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SEC = 2.0
DEFAULT_MAX_POLL_ATTEMPTS = 1800
CANCELLED_MESSAGE = "Task cancelled by user"
REMOTE_INPUT_KEY = "human_input"


class BatchExecutor:
    """
    Drives batch tasks through invocation and polling in sequential slices.

    Tasks of one slice run concurrently; the next slice starts only once every
    member of the current one is terminal. ``stop()`` prevents new slices from
    starting while the current slice finishes polling.
    """

    def __init__(
        self,
        flows: FlowInvocationRepository | None = None,
        broadcaster: BatchEventBroadcaster | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SEC,
        max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
    ) -> None:
        self._flows = flows or inject.instance(FlowInvocationRepository)
        self._broadcaster = broadcaster or inject.instance(BatchEventBroadcaster)
        self._poll_interval = poll_interval
        self._max_poll_attempts = max_poll_attempts
        self._running = False
        self._stop_requested = False
        self._active: set[str] = set()

    @property
    def is_executing(self) -> bool:
        return self._running and not self._stop_requested

    @property
    def is_running(self) -> bool:
        """True until the batch loop has drained, including after stop()."""
        return self._running

    def is_task_active(self, task_id: str) -> bool:
        return task_id in self._active

    @staticmethod
    def validate(
        tasks: Sequence[BatchTask],
        flow_id: str,
        workspace_id: str,
        config: BatchConfiguration,
    ) -> None:
        if not tasks:
            raise BatchValidationError("No tasks to execute.")
        if not flow_id:
            raise BatchValidationError("A flow must be selected before starting the batch.")
        if not workspace_id:
            raise BatchValidationError("A workspace must be selected before starting the batch.")
        if config.write_output_to_file:
            missing = sum(1 for task in tasks if not task.filename)
            if missing:
                raise BatchValidationError(
                    f"{missing} task(s) have no filename while writing output to files is enabled."
                )

    def start(
        self,
        tasks: list[BatchTask],
        flow_id: str,
        workspace_id: str,
        config: BatchConfiguration,
    ) -> asyncio.Task[BatchSummary]:
        """Validate and schedule a batch run in the background."""
        self._claim(tasks, flow_id, workspace_id, config)
        return asyncio.create_task(self._run_batch(tasks, flow_id, workspace_id, config))

    async def run_batch(
        self,
        tasks: list[BatchTask],
        flow_id: str,
        workspace_id: str,
        config: BatchConfiguration,
    ) -> BatchSummary:
        self._claim(tasks, flow_id, workspace_id, config)
        return await self._run_batch(tasks, flow_id, workspace_id, config)

    def stop(self) -> None:
        if self._running and not self._stop_requested:
            logger.info("Stopping batch execution")
            self._stop_requested = True

    def _claim(
        self,
        tasks: list[BatchTask],
        flow_id: str,
        workspace_id: str,
        config: BatchConfiguration,
    ) -> None:
        if self._running:
            raise BatchAlreadyRunningError()
        self.validate(tasks, flow_id, workspace_id, config)
        self._running = True
        self._stop_requested = False

    def _reset_for_run(self, tasks: list[BatchTask]) -> list[BatchTask]:
        runnable = []
        for task in tasks:
            if task.status.is_terminal or task.id in self._active:
                continue
            task.status = TaskState.WAITING
            task.result = None
            task.error = None
            runnable.append(task)
        return runnable

    async def _run_batch(
        self,
        tasks: list[BatchTask],
        flow_id: str,
        workspace_id: str,
        config: BatchConfiguration,
    ) -> BatchSummary:
        try:
            runnable = self._reset_for_run(tasks)
            logger.info(
                "Starting batch execution",
                extra={
                    "flow_id": flow_id,
                    "tasks": len(tasks),
                    "runnable": len(runnable),
                    "mode": "singleton" if config.singleton_mode else "normal",
                    "parallelism": config.parallelism,
                },
            )
            await self._broadcaster.broadcast(
                BatchEvent.batch_started(flow_id, len(tasks), len(runnable), config.parallelism)
            )
            for index, offset in enumerate(range(0, len(runnable), config.parallelism)):
                if self._stop_requested:
                    break
                batch = [
                    task
                    for task in runnable[offset : offset + config.parallelism]
                    if task.status == TaskState.WAITING and task.id not in self._active
                ]
                await asyncio.gather(
                    *(self.execute_one(task, flow_id, workspace_id, config) for task in batch)
                )
                await self._broadcaster.broadcast(
                    BatchEvent.slice_completed(index, len(batch), BatchSummary.from_tasks(tasks))
                )

            summary = BatchSummary.from_tasks(tasks, stopped=self._stop_requested)
            if summary.stopped:
                logger.info("Batch execution stopped", extra=summary.model_dump())
            else:
                logger.info(
                    "Batch execution completed: %d succeeded, %d failed",
                    summary.done,
                    summary.failed,
                )
            await self._broadcaster.broadcast(BatchEvent.batch_finished(summary))
            return summary
        finally:
            self._running = False
            self._stop_requested = False

    async def execute_one(
        self,
        task: BatchTask,
        flow_id: str,
        workspace_id: str,
        config: BatchConfiguration,
    ) -> None:
        """Run one task to a terminal state. Never raises for task-level failures."""
        if task.id in self._active:
            logger.warning("Task is already executing", extra={"task_id": task.id})
            return
        self._active.add(task.id)
        try:
            await self._execute(task, flow_id, workspace_id, config)
        finally:
            self._active.discard(task.id)
        await self._broadcaster.broadcast(BatchEvent.task_finalized(task))

    async def _execute(
        self,
        task: BatchTask,
        flow_id: str,
        workspace_id: str,
        config: BatchConfiguration,
    ) -> None:
        if task.should_cancel:
            task.mark_failed(CANCELLED_MESSAGE)
            logger.warning("Task cancelled before dispatch", extra={"task_id": task.id})
            return
        try:
            task.mark_queued()
            await self._broadcaster.broadcast(BatchEvent.task_updated(task))

            response = await self._flows.invoke(
                flow_id,
                workspace_id,
                {REMOTE_INPUT_KEY: task.flow_input.get("input")},
                singleton=config.singleton_mode,
            )
            if not response.id:
                raise FlowApiError("No task ID returned from flow invocation")
            task.task_id = response.id
            logger.info(
                "Flow invoked",
                extra={"task_id": task.id, "remote_task_id": response.id, "status": response.status},
            )
            await self._broadcaster.broadcast(BatchEvent.task_updated(task))

            if response.status != RemoteStatus.PENDING.value or response.result is not None:
                if self._finalize(task, response, accept_result=True):
                    return

            await self._poll(task, flow_id, response.id, workspace_id)
        except Exception as exc:
            logger.exception("Task failed", extra={"task_id": task.id})
            task.mark_failed(str(exc) or type(exc).__name__)

    async def _poll(self, task: BatchTask, flow_id: str, remote_id: str, workspace_id: str) -> None:
        attempts = 0
        while attempts < self._max_poll_attempts and not task.should_cancel:
            await asyncio.sleep(self._poll_interval)
            attempts += 1
            if task.should_cancel:
                break

            response = await self._flows.poll_status(flow_id, remote_id, workspace_id)
            if attempts == 1 or attempts % 10 == 0:
                logger.info(
                    "Polled flow task",
                    extra={"remote_task_id": remote_id, "attempt": attempts, "status": response.status},
                )
            if self._finalize(task, response):
                logger.debug("Task finished after %d polls", attempts, extra={"task_id": task.id})
                return
            if response.status != RemoteStatus.PENDING.value:
                logger.warning(
                    "Unexpected task status, continuing to poll",
                    extra={"remote_task_id": remote_id, "status": response.status},
                )

        if task.should_cancel:
            logger.warning("Task cancelled by user", extra={"task_id": task.id})
            task.mark_failed(CANCELLED_MESSAGE)
            return

        seconds = self._max_poll_attempts * self._poll_interval
        logger.error("Task timed out", extra={"task_id": task.id, "remote_task_id": remote_id})
        task.mark_failed(f"Task {remote_id} timed out after {seconds:g} seconds")

    @staticmethod
    def _finalize(task: BatchTask, response: FlowTaskResponse, accept_result: bool = False) -> bool:
        status = response.status
        if status in FAILED_REMOTE_STATUSES:
            task.mark_failed(
                response.error_message or f"Task failed: {status}",
                raw_output=serialize_response(response),
            )
            return True
        if status == RemoteStatus.SUCCESS.value or (accept_result and response.result is not None):
            answer = (
                response_answer(response)
                or response.error_message
                or f"Task {response.id} - {status}"
            )
            task.mark_done(answer, response_credits(response), serialize_response(response))
            return True
        return False
