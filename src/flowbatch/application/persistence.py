from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

import inject

from src.flowbatch.domain.exceptions import OutputWriteError
from src.flowbatch.domain.models.batch_summary import OutputWriteReport
from src.flowbatch.domain.models.batch_task import BatchTask
from src.flowbatch.domain.models.task_state import TaskState
from src.flowbatch.domain.repositories import ResultSinkRepository

logger = logging.getLogger(__name__)


class ResultWriter:
    """Writes task results to one text file per task under an output directory."""

    def __init__(self, sink: ResultSinkRepository | None = None) -> None:
        self._sink = sink or inject.instance(ResultSinkRepository)

    async def write_task_to_file(self, task: BatchTask, output_directory: str) -> Path:
        if not task.filename:
            raise OutputWriteError(task.id, f"Task '{task.id}' has no filename.")
        if task.result is None:
            raise OutputWriteError(task.id, f"Task '{task.id}' has no result to write.")
        try:
            path = await self._sink.write_text(output_directory, task.filename, task.result)
        except (OSError, ValueError) as exc:
            raise OutputWriteError(task.id, f"Failed to write {task.filename}: {exc}") from exc
        logger.info("Wrote task output", extra={"task_id": task.id, "path": str(path)})
        return path

    async def write_all_completed(
        self, tasks: Iterable[BatchTask], output_directory: str
    ) -> OutputWriteReport:
        report = OutputWriteReport()
        for task in tasks:
            if task.status != TaskState.DONE or task.result is None or task.filename is None:
                continue
            try:
                await self.write_task_to_file(task, output_directory)
            except OutputWriteError as exc:
                logger.error("Failed to write task output", extra={"task_id": task.id})
                report.errors[task.id] = str(exc)
                continue
            report.written += 1
        logger.info(
            "Wrote %d output files to %s", report.written, output_directory,
            extra={"failed": len(report.errors)},
        )
        return report
