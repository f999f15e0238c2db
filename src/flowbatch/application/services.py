from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import inject

from src.flowbatch.application.executor import BatchExecutor
from src.flowbatch.application.importer import import_csv_file, import_csv_text
from src.flowbatch.application.persistence import ResultWriter
from src.flowbatch.domain.exceptions import (
    BatchAlreadyRunningError,
    BatchValidationError,
    TaskBusyError,
    TaskNotFoundError,
)
from src.flowbatch.domain.models import (
    BatchConfiguration,
    BatchSummary,
    BatchTask,
    ImportResult,
    OutputWriteReport,
)
from src.flowbatch.domain.repositories import PreferencesRepository

logger = logging.getLogger(__name__)


class BatchService:
    """Ordered task registry plus the configuration and executor driving it."""

    def __init__(
        self,
        executor: BatchExecutor | None = None,
        writer: ResultWriter | None = None,
        preferences: PreferencesRepository | None = None,
        config: BatchConfiguration | None = None,
    ) -> None:
        self._executor = executor or inject.instance(BatchExecutor)
        self._writer = writer or ResultWriter()
        self._preferences = preferences or inject.instance(PreferencesRepository)
        self._config = config or inject.instance(BatchConfiguration)
        self._tasks: list[BatchTask] = []
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def tasks(self) -> list[BatchTask]:
        return list(self._tasks)

    @property
    def config(self) -> BatchConfiguration:
        return self._config

    @property
    def is_executing(self) -> bool:
        return self._executor.is_executing

    def summary(self) -> BatchSummary:
        return BatchSummary.from_tasks(self._tasks)

    def update_config(self, **changes: Any) -> BatchConfiguration:
        updated = BatchConfiguration.model_validate({**self._config.model_dump(), **changes})
        if updated.output_directory != self._config.output_directory:
            self._preferences.set_output_directory(updated.output_directory)
        self._config = updated
        logger.info("Batch configuration updated", extra={"changes": sorted(changes)})
        return updated

    def get_task(self, task_id: str) -> BatchTask:
        for task in self._tasks:
            if task.id == task_id:
                return task
        raise TaskNotFoundError(task_id)

    def add_task(self, input_text: str, filename: str | None = None) -> BatchTask:
        filename = filename or None
        if self._config.write_output_to_file and not filename:
            raise BatchValidationError("A filename is required while writing output to files.")
        task = BatchTask.from_input(input_text, filename=filename)
        self._tasks.append(task)
        logger.info("Manual task added", extra={"task_id": task.id, "total": len(self._tasks)})
        return task

    def add_tasks(self, tasks: list[BatchTask]) -> None:
        self._tasks.extend(tasks)

    def import_csv_text(self, text: str, merge_columns: bool = False) -> ImportResult:
        result = import_csv_text(
            text,
            require_filename=self._config.write_output_to_file,
            merge_columns=merge_columns,
        )
        self._tasks.extend(result.tasks)
        return result

    async def import_csv_file(self, path: str | Path, merge_columns: bool = False) -> ImportResult:
        result = await import_csv_file(
            path,
            require_filename=self._config.write_output_to_file,
            merge_columns=merge_columns,
        )
        self._tasks.extend(result.tasks)
        return result

    def update_task(
        self,
        task_id: str,
        input_text: str | None = None,
        filename: str | None = None,
    ) -> BatchTask:
        """Replace a task's input or filename, keeping its id and resetting its state."""
        task = self._ensure_editable(task_id)
        replacement = BatchTask(
            id=task.id,
            flow_input={"input": input_text} if input_text is not None else dict(task.flow_input),
            row_data=task.row_data,
            filename=(filename or None) if filename is not None else task.filename,
        )
        self._tasks[self._tasks.index(task)] = replacement
        return replacement

    def remove_task(self, task_id: str) -> None:
        task = self._ensure_editable(task_id)
        self._tasks.remove(task)

    def clear_tasks(self) -> None:
        if self._executor.is_running or any(
            self._executor.is_task_active(task.id) for task in self._tasks
        ):
            raise BatchAlreadyRunningError()
        self._tasks.clear()

    def start(self, flow_id: str, workspace_id: str) -> asyncio.Task[BatchSummary]:
        run = self._executor.start(self._tasks, flow_id, workspace_id, self._config)
        self._track(run)
        return run

    async def run_batch(self, flow_id: str, workspace_id: str) -> BatchSummary:
        return await self._executor.run_batch(self._tasks, flow_id, workspace_id, self._config)

    def stop(self) -> None:
        self._executor.stop()

    def run_task(self, task_id: str, flow_id: str, workspace_id: str) -> asyncio.Task[None]:
        task = self._ensure_idle(task_id)
        if not flow_id or not workspace_id:
            raise BatchValidationError("A flow and a workspace are required to run a task.")
        logger.info("Starting single task", extra={"task_id": task.id})
        run = asyncio.create_task(
            self._executor.execute_one(task, flow_id, workspace_id, self._config)
        )
        self._track(run)
        return run

    def retry_task(self, task_id: str, flow_id: str, workspace_id: str) -> asyncio.Task[None]:
        task = self._ensure_idle(task_id)
        logger.info("Retrying task", extra={"task_id": task.id})
        task.reset_for_retry()
        return self.run_task(task_id, flow_id, workspace_id)

    def cancel_task(self, task_id: str) -> BatchTask:
        task = self.get_task(task_id)
        logger.info("Cancelling task", extra={"task_id": task.id})
        task.should_cancel = True
        return task

    async def write_task_output(self, task_id: str) -> Path:
        task = self.get_task(task_id)
        return await self._writer.write_task_to_file(task, self._config.output_directory)

    async def write_outputs(self) -> OutputWriteReport:
        if not self._config.write_output_to_file:
            raise BatchValidationError("Writing output to files is disabled.")
        return await self._writer.write_all_completed(self._tasks, self._config.output_directory)

    def _ensure_editable(self, task_id: str) -> BatchTask:
        # The running batch holds the task objects it was started with.
        if self._executor.is_running:
            raise BatchAlreadyRunningError()
        return self._ensure_idle(task_id)

    def _ensure_idle(self, task_id: str) -> BatchTask:
        task = self.get_task(task_id)
        if self._executor.is_task_active(task.id):
            raise TaskBusyError(task.id)
        return task

    def _track(self, run: asyncio.Task[Any]) -> None:
        self._background.add(run)
        run.add_done_callback(self._background.discard)
