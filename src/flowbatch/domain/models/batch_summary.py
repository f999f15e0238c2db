from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, Field

from src.flowbatch.domain.models.batch_task import BatchTask
from src.flowbatch.domain.models.task_state import TaskState


class BatchSummary(BaseModel):
    total: int = 0
    waiting: int = 0
    queued: int = 0
    done: int = 0
    failed: int = 0
    stopped: bool = Field(default=False, description="True when stop() ended the run early.")

    @classmethod
    def from_tasks(cls, tasks: Iterable[BatchTask], stopped: bool = False) -> "BatchSummary":
        counts = {state: 0 for state in TaskState}
        total = 0
        for task in tasks:
            counts[task.status] += 1
            total += 1
        return cls(
            total=total,
            waiting=counts[TaskState.WAITING],
            queued=counts[TaskState.QUEUED],
            done=counts[TaskState.DONE],
            failed=counts[TaskState.FAILED],
            stopped=stopped,
        )


class OutputWriteReport(BaseModel):
    written: int = Field(default=0, description="Number of files written.")
    errors: dict[str, str] = Field(
        default_factory=dict, description="Write failures keyed by task id."
    )


class ImportResult(BaseModel):
    tasks: list[BatchTask] = Field(default_factory=list)
    skipped: int = Field(default=0, description="Rows dropped for a missing filename.")
    total_rows: int = Field(default=0, description="Data rows after header detection.")
    has_header: bool = False
